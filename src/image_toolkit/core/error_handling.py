# src/image_toolkit/core/error_handling.py

import contextlib
import functools
import logging

from PIL import Image, UnidentifiedImageError

from .exceptions import CodecError, ImageToolkitError

CORRUPT_INPUT_MESSAGE = "Unsupported or corrupt image data."


@contextlib.contextmanager
def decoding_input(operation_name):
    """
    Treat any failure while opening and loading caller bytes as bad input.

    Pillow reports truncated or garbage data as UnidentifiedImageError, a
    plain OSError or a SyntaxError depending on the plugin and version. All
    of them are reported as corrupt data and logged at debug level.
    Decompression bombs are left for with_error_handling.
    """
    try:
        yield
    except (ImageToolkitError, Image.DecompressionBombError):
        raise
    except (OSError, SyntaxError, ValueError) as e:
        logging.getLogger("image-toolkit.codec").debug(
            f"Undecodable input in '{operation_name}': {e}"
        )
        raise CodecError(CORRUPT_INPUT_MESSAGE) from e


def with_error_handling(func):
    """
    A decorator translating codec failures into CodecError.

    Errors that already belong to the toolkit hierarchy pass through
    untouched; Pillow decode errors, decompression bombs and OSError/ValueError
    raised while encoding become CodecError with the original as cause.
    """
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        logger = logging.getLogger("image-toolkit." + func.__module__.rsplit(".", 1)[-1])
        try:
            return func(*args, **kwargs)
        except ImageToolkitError:
            raise
        except UnidentifiedImageError as e:
            logger.debug(f"Undecodable input in '{func.__name__}': {e}")
            raise CodecError(CORRUPT_INPUT_MESSAGE) from e
        except Image.DecompressionBombError as e:
            logger.warning(f"Decompression bomb rejected in '{func.__name__}': {e}")
            raise CodecError(f"Image is too large to decode safely: {e}") from e
        except (OSError, ValueError, SyntaxError) as e:
            logger.error(f"Error in '{func.__name__}': {e}", exc_info=True)
            raise CodecError(f"Image could not be processed: {e}") from e
    return wrapper


class BatchOperationContextManager:
    """
    Context manager for batch operations to collect and summarize errors.
    """
    def __init__(self, operation_name="Batch Operation"):
        self.operation_name = operation_name
        self.errors = []
        self.logger = logging.getLogger("image-toolkit.batch")

    def __enter__(self):
        self.logger.debug(f"Starting {self.operation_name}.")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.errors:
            self.logger.warning(
                f"{self.operation_name} completed with {len(self.errors)} error(s)."
            )
            for i, error_detail in enumerate(self.errors):
                self.logger.warning(
                    f"  Error {i+1}/{len(self.errors)} for item "
                    f"'{error_detail['item']}': {error_detail['error']}"
                )
        elif exc_type:
            self.logger.error(
                f"{self.operation_name} failed due to an unhandled exception: {exc_val}",
                exc_info=(exc_type, exc_val, exc_tb)
            )
        else:
            self.logger.debug(f"{self.operation_name} completed successfully.")
        return False

    def add_error(self, error_message: str, item_identifier: str = "Unknown item"):
        """
        Report an error for a specific item within the 'with' block.

        Args:
            error_message (str): The error message or exception string.
            item_identifier (str): A string identifying the item that failed.
        """
        self.errors.append({"item": item_identifier, "error": str(error_message)})
