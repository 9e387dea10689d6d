"""Tag-dispatched decoding into a closed set of pydantic variants."""

import logging
from typing import Any, Dict, Mapping, Type, TypeVar

from pydantic import BaseModel, ValidationError

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


def decode_variant(
    raw: Dict[str, Any],
    variants: Mapping[str, Type[BaseModel]],
    fallback: Type[ModelT],
    tag: str = "type",
) -> BaseModel:
    """
    Validate ``raw`` against the variant registered for its tag.

    Unknown tags, and known tags whose shape does not validate, decode to
    ``fallback`` so callers always switch on a closed set of types.

    Raises:
        ValidationError: If even the fallback cannot represent ``raw``
    """
    model = variants.get(raw.get(tag)) if isinstance(raw.get(tag), str) else None
    if model is not None:
        try:
            return model.model_validate(raw)
        except ValidationError as e:
            logger.debug(f"'{raw.get(tag)}' did not match its variant: {e.error_count()} errors")
    return fallback.model_validate(raw)
