from typing import Any, Dict, List, Optional


class ProvisionerError(Exception):
    """Base exception for the provisioner."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.error_code = error_code or "INTERNAL_ERROR"
        self.details = details or {}
        super().__init__(self.message)


class PrerequisiteMissingError(ProvisionerError):
    """A prerequisite of the provisioning run is not satisfied."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "PREREQUISITE_MISSING", details)


class MissingToolError(PrerequisiteMissingError):
    """A required external executable is not installed."""

    def __init__(self, tool: str, message: Optional[str] = None):
        super().__init__(
            message or f"{tool} is not installed. Please install it first.",
            {"tool": tool},
        )
        self.tool = tool
        self.error_code = "MISSING_TOOL"


class UnauthenticatedError(ProvisionerError):
    """The operator's cloud identity could not be confirmed."""

    def __init__(
        self,
        message: str = "AWS CLI is not configured. Run 'aws configure' first.",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, "UNAUTHENTICATED", details)


class PlanComputationError(ProvisionerError):
    """The declared graph cannot be turned into a plan."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "PLAN_COMPUTATION_ERROR", details)


class ReferenceCycleError(PlanComputationError):
    """Resource references form a cycle."""

    def __init__(self, cycle: List[str]):
        super().__init__(
            f"Reference cycle detected: {' -> '.join(cycle)}",
            {"cycle": cycle},
        )
        self.cycle = cycle
        self.error_code = "REFERENCE_CYCLE"


class ApplyFailedError(ProvisionerError):
    """A plan step failed; the graph is partially applied."""

    def __init__(
        self,
        message: str,
        statuses: Dict[str, str],
        failed_address: Optional[str] = None,
    ):
        super().__init__(
            message,
            "APPLY_FAILED",
            {"statuses": statuses, "failed_address": failed_address},
        )
        self.statuses = statuses
        self.failed_address = failed_address


class OperatorAbortedError(ProvisionerError):
    """The operator declined the confirmation prompt."""

    def __init__(self, message: str = "Deployment cancelled", answer: Optional[str] = None):
        details = {"answer": answer} if answer is not None else None
        super().__init__(message, "OPERATOR_ABORTED", details)


class StateLockedError(ProvisionerError):
    """Another run holds the state lock."""

    def __init__(self, lock_path: str, holder: Optional[str] = None):
        details = {"lock_path": lock_path}
        if holder:
            details["holder"] = holder
        super().__init__(
            f"State is locked by another run ({lock_path})", "STATE_LOCKED", details
        )


class ProviderCommandError(ProvisionerError):
    """An external provider command failed."""

    def __init__(
        self,
        message: str,
        tool: str,
        details: Optional[Dict[str, Any]] = None,
    ):
        details = details or {}
        details["tool"] = tool
        super().__init__(message, "PROVIDER_COMMAND_ERROR", details)

    @property
    def stderr(self) -> str:
        return self.details.get("stderr", "")

    @property
    def is_not_found(self) -> bool:
        """Whether the provider reported the target as missing."""
        markers = (
            "NotFound",
            "not found",
            "does not exist",
            "ResourceNotFoundException",
            "NoSuchEntity",
            "RepositoryNotFoundException",
            "ImageNotFoundException",
            "ClusterNotFoundException",
            "ServiceNotFoundException",
        )
        return any(marker in self.stderr for marker in markers)


class ResourceNotFoundError(ProvisionerError):
    """A resource recorded in state could not be located."""

    def __init__(self, address: str, resource_id: Optional[str] = None):
        details = {"address": address}
        if resource_id:
            details["resource_id"] = resource_id
        super().__init__(f"Resource not found: {address}", "RESOURCE_NOT_FOUND", details)
