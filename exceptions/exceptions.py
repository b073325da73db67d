from __future__ import annotations

from typing import Any


class ObjectNotFoundError(Exception):
    def __init__(self, name: str, reason: str = "") -> None:
        self.name = name
        self.reason = reason

    def __str__(self) -> str:
        return f"Object not found: {self.name}{f' ({self.reason})' if self.reason else ''}"


class VmNotFoundError(ObjectNotFoundError):
    def __str__(self) -> str:
        return f"VM not found: {self.name}{f' ({self.reason})' if self.reason else ''}"


class ObjectDeletedError(Exception):
    def __init__(self, ref: Any) -> None:
        self.ref = ref

    def __str__(self) -> str:
        return f"Object was deleted: {self.ref}"


class InvalidHostError(Exception):
    def __init__(self, host: str, datastore: str = "", networks: list[str] | None = None) -> None:
        self.host = host
        self.datastore = datastore
        self.networks = networks or []

    def __str__(self) -> str:
        return f"Invalid host {self.host}: requested networks {self.networks} or datastore '{self.datastore}' missing"


class NoHostsInClusterError(Exception):
    pass


class NoSuitableHostError(Exception):
    pass


class NoResourcePoolError(Exception):
    pass


class DestinationNotSupportedError(Exception):
    def __init__(self, destination_type: str) -> None:
        self.destination_type = destination_type

    def __str__(self) -> str:
        return f"Destination type '{self.destination_type}' is not supported"


class PropertyRetrievalError(Exception):
    def __init__(self, ref: Any, properties: list[str], reason: str = "") -> None:
        self.ref = ref
        self.properties = properties
        self.reason = reason

    def __str__(self) -> str:
        return f"Failed to retrieve properties {self.properties} of {self.ref}: {self.reason}"


class BadResponseError(Exception):
    def __init__(self, status: int, reason: str = "") -> None:
        self.status = status
        self.reason = reason

    def __str__(self) -> str:
        return f"Bad response status {self.status}: {self.reason}"


class ParsingURLError(Exception):
    def __init__(self, url: str, reason: str = "") -> None:
        self.url = url
        self.reason = reason

    def __str__(self) -> str:
        return f"Failed to parse URL {self.url}: {self.reason}"


class ClientFailedError(Exception):
    pass


class PowerStateChangingError(Exception):
    def __init__(self, vm: str, state: str) -> None:
        self.vm = vm
        self.state = state

    def __str__(self) -> str:
        return f"VM {self.vm} power state is changing ({self.state}), try again later"


class TaskFailedError(Exception):
    def __init__(self, action: str, reason: str) -> None:
        self.action = action
        self.reason = reason

    def __str__(self) -> str:
        return f"{self.action} failed: {self.reason}"


class VmCloneError(TaskFailedError):
    pass


class DiskShrinkNotSupportedError(Exception):
    def __init__(self, file_name: str) -> None:
        self.file_name = file_name

    def __str__(self) -> str:
        return f"Shrinking Virtual Disks is not supported: {self.file_name}"


class InvalidNetworkOperationError(Exception):
    pass


class QuestionAnswerError(Exception):
    def __init__(self, answer: str, question: str, reason: str, valid_options: str) -> None:
        self.answer = answer
        self.question = question
        self.reason = reason
        self.valid_options = valid_options

    def __str__(self) -> str:
        return (
            f"error with answer '{self.answer}' to question '{self.question}': {self.reason}. "
            f"Valid answers: {self.valid_options}"
        )


class OvfImportError(Exception):
    pass


class VmOperationTimeoutError(Exception):
    def __init__(self, vm: str, operation: str) -> None:
        self.vm = vm
        self.operation = operation

    def __str__(self) -> str:
        return f"{self.operation} vm: {self.vm} timed out"


class OperationCancelledError(Exception):
    pass


class AzureCLIError(Exception):
    def __init__(self, reason: str, command: str = "", returncode: int | None = None, transient: bool = False) -> None:
        self.reason = reason
        self.command = command
        self.returncode = returncode
        self.transient = transient

    def __str__(self) -> str:
        if not self.command:
            return self.reason

        return f"az {self.command} failed (rc={self.returncode}): {self.reason}"


class AzureDeploymentError(Exception):
    pass


class MissingTemplateParametersError(Exception):
    def __init__(self, missing: list[str]) -> None:
        self.missing = missing

    def __str__(self) -> str:
        return f"Missing required template parameters: {', '.join(self.missing)}"


class VSphereApiError(Exception):
    def __init__(self, operation: str, reason: str) -> None:
        self.operation = operation
        self.reason = reason

    def __str__(self) -> str:
        return f"vSphere {self.operation} failed: {self.reason}"
