import re
from datetime import datetime, timezone
from typing import List, Dict, Optional, Any, Callable
from io import BytesIO
from PIL import Image, UnidentifiedImageError
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.session import Session

from app.src import schemas
from app.src.constants import REGEX_EMAIL_LIKE
from app.src.exceptions import APIException


def fuseExceptionResponses(exceptions: List[APIException]) -> Dict[int, dict]:
    """
    Generate OpenAPI response documentation by fusing multiple APIException instances.

    Args:
        exceptions (List[APIException]): List of instantiated exceptions.

    Returns:
        Dict[int, dict]: A dictionary of OpenAPI response specs grouped by status code.
    """
    responses = {}

    for exception in exceptions:
        status_code = exception.status_code
        example_key = type(exception).__name__
        example_value = {
            "summary": str(exception.headers),
            "value": {"message": exception.detail},
        }

        if status_code not in responses:
            responses[status_code] = {
                "model": schemas.ErrorResponse,
                "content": {
                    "application/json": {"examples": {example_key: example_value}}
                },
            }
        else:
            responses[status_code]["content"]["application/json"]["examples"][
                example_key
            ] = example_value

    return responses


def enumStr(enumClass) -> str:
    """
    Convert an Enum class into a comma-separated string of its members.

    Each enum member is formatted as "<NAME>: <VALUE>".

    Example:
        >>> enumStr(StopStatus)
        'PENDING: 1, ON_THE_WAY: 2, ARRIVED: 3, COMPLETED: 4, FAILED: 5'
    """
    return ", ".join(f"{x.name}: {x.value}" for x in enumClass)


def isValidTransition(
    transitions: dict[Any, list[Any]], old_state: Any, new_state: Any
) -> bool:
    """
    Check if a state transition is valid.

    Args:
        transitions (dict[Any, list[Any]]): Mapping of valid transitions.
            Example:
                {
                    StopStatus.PENDING: [StopStatus.ON_THE_WAY, StopStatus.FAILED],
                    StopStatus.ON_THE_WAY: [StopStatus.ARRIVED, StopStatus.FAILED],
                }
        old_state (Any): Current state value.
        new_state (Any): Desired new state value.

    Returns:
        bool: True if transition is valid, False otherwise.

    Notes:
        - If `old_state` is not in the transitions mapping, this will return False.
    """
    if not transitions:
        return False
    if old_state not in transitions:
        return False
    return new_state in transitions[old_state]


def updateIfChanged(targetObj, sourceObj, fields: List[str]) -> None:
    """
    Update attributes on a target object from a source object
    only if the values differ and the new value is not None.

    Designed for use with SQLAlchemy models, where `fields` are typically
    provided as `Model.field.key`.

    Example:
        >>> updateIfChanged(
        ...     vehicle,
        ...     fParam,
        ...     [
        ...         Vehicle.make.key,
        ...         Vehicle.model.key,
        ...         Vehicle.status.key,
        ...     ],
        ... )
        # vehicle will be updated where values differ; unchanged fields are skipped silently
    """
    for field in fields:
        new_value = getattr(sourceObj, field, None)
        if new_value is not None:
            old_value = getattr(targetObj, field)
            if old_value != new_value:
                setattr(targetObj, field, new_value)


def resizeImage(
    imageBytes: bytes, format: str, height: int = None, width: int = None
) -> bytes:
    """
    Resize an image (bytes) to the given width and height while preserving aspect ratio.

    If `height` or `width` is not provided, the original dimension is used.
    The output image is always converted to RGB mode to avoid format issues
    (e.g., when saving PNG with transparency to JPEG).

    Args:
        imageBytes (bytes): The input image in bytes format.
        format (str): The target format (e.g., "JPEG", "PNG").
        height (int, optional): Target height in pixels. Defaults to original height.
        width (int, optional): Target width in pixels. Defaults to original width.

    Returns:
        bytes: The resized image as bytes in the requested format.
    """
    image = Image.open(BytesIO(imageBytes))

    if height is None:
        height = image.height
    if width is None:
        width = image.width

    newSize = (width, height)
    image.thumbnail(newSize)  # preserves aspect ratio, fits inside box

    if image.mode != "RGB":
        image = image.convert("RGB")

    with BytesIO() as outputBuffer:
        image.save(outputBuffer, format)
        return outputBuffer.getvalue()


def isImage(imageBytes: bytes) -> bool:
    """Check whether the bytes can be decoded by Pillow as an image."""
    try:
        with Image.open(BytesIO(imageBytes)) as image:
            image.verify()
        return True
    except (UnidentifiedImageError, OSError, SyntaxError):
        return False


def splitMIME(mimeType: str) -> Dict[str, Optional[str]]:
    """
    Safely split a MIME type string into type, subtype, and optional parameters.

    A MIME type generally follows the format:
        type/subtype[;parameter[;parameter...]]

    Example:
        >>> splitMIME("image/jpeg")
        {'type': 'image', 'sub_type': 'jpeg', 'parameter': None}

        >>> splitMIME("text/html; charset=UTF-8")
        {'type': 'text', 'sub_type': 'html', 'parameter': 'charset=UTF-8'}

        >>> splitMIME("invalidstring")
        {'type': 'invalidstring', 'sub_type': None, 'parameter': None}
    """
    if not mimeType or "/" not in mimeType:
        return {"type": mimeType or None, "sub_type": None, "parameter": None}

    type_part, rest = mimeType.split("/", 1)
    type_part = type_part.strip() or None

    if ";" in rest:
        subType, *params = [p.strip() for p in rest.split(";")]
        parameter = "; ".join(params) if params else None
    else:
        subType, parameter = rest.strip() or None, None

    return {"type": type_part, "sub_type": subType, "parameter": parameter}


def asUTC(value: datetime | None) -> datetime | None:
    """Attach UTC to naive timestamps returned by backends without timezone support."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def containsEmail(text: str | None) -> bool:
    """
    Check whether a text contains an email-like substring.

    Example:
        >>> containsEmail("ACME Stores")
        False
        >>> containsEmail("ACME orders@acme.com")
        True
    """
    if not text:
        return False
    return re.search(REGEX_EMAIL_LIKE, text) is not None


def normalizeName(name: str | None) -> str:
    """Normalize a person name for comparison. Matches SQL `lower(trim(name))`."""
    if not name:
        return ""
    return name.strip().lower()


def insertIfAbsent(session: Session, instance, lookup: Callable[[], Any]):
    """
    Insert a row unless an equivalent row already exists.

    The table must carry a unique constraint covering the identity of the row.
    An existing row is looked up first. When a concurrent insert wins the race
    the constraint rejects ours, the transaction is rolled back and the
    existing row is returned instead.
    Repeated or concurrent calls therefore store exactly one record.

    Args:
        session (Session): Active SQLAlchemy session.
        instance: New ORM object to insert.
        lookup (Callable): Returns the existing row for the same identity.

    Returns:
        tuple: (row, created) where `created` tells whether the row was inserted.
    """
    existing = lookup()
    if existing is not None:
        return existing, False
    try:
        session.add(instance)
        session.commit()
        session.refresh(instance)
        return instance, True
    except IntegrityError:
        session.rollback()
        existing = lookup()
        if existing is None:
            raise
        return existing, False
