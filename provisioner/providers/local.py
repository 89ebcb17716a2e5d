"""Resources that live only in state, without any remote counterpart."""

import hashlib
from typing import Any, Dict, Optional, Tuple

from provisioner.core.exceptions import PlanComputationError
from provisioner.core.logging import get_provider_logger
from provisioner.providers.base import ResourceHandler
from provisioner.services.credentials import (
    DEFAULT_SPECIAL,
    MAX_PASSWORD_LENGTH,
    MIN_PASSWORD_LENGTH,
    generate_password,
)

logger = get_provider_logger("local")


class RandomPasswordHandler(ResourceHandler):
    """Generate a password once and keep it in state.

    Any input change replaces the resource, which is the only way the
    stored value is ever regenerated.
    """

    kind = "random_password"
    supports_update = False
    sensitive_attributes = frozenset({"result"})

    def validate(self, inputs: Dict[str, Any]) -> None:
        super().validate(inputs)
        length = inputs.get("length", 32)
        if isinstance(length, int) and not MIN_PASSWORD_LENGTH <= length <= MAX_PASSWORD_LENGTH:
            raise PlanComputationError(
                f"random_password length must be between {MIN_PASSWORD_LENGTH} and {MAX_PASSWORD_LENGTH}",
                {"kind": self.kind, "length": length},
            )

    def read(self, resource_id: str, attributes: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        return dict(attributes)

    def create(self, inputs: Dict[str, Any]) -> Tuple[str, Dict[str, Any]]:
        length = int(inputs.get("length", 32))
        special = bool(inputs.get("special", True))
        override_special = inputs.get("override_special", DEFAULT_SPECIAL)
        result = generate_password(length, special, override_special)
        # The id identifies the value without revealing it
        resource_id = hashlib.sha256(result.encode()).hexdigest()[:16]
        logger.info("Generated password", length=length, special=special)
        return resource_id, {
            "id": resource_id,
            "length": length,
            "special": special,
            "override_special": override_special,
            "result": result,
        }

    def delete(self, resource_id: str, attributes: Dict[str, Any]) -> None:
        logger.info("Discarding generated password", id=resource_id)
