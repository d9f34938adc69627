"""
Result objects for core operations.

Provides one result structure that the CLI and library callers use to report
upload outcomes without catching protocol exceptions themselves.
"""

from dataclasses import dataclass, field
from typing import List, Dict, Any, Optional


@dataclass
class OperationResult:
    """
    Outcome of a core operation.

    Attributes:
        ok: Whether the operation completed successfully
        operation: Name of the operation (e.g., "upload")
        port: Serial port used, if any
        bytes_len: Size of the image as loaded
        padded_len: Size actually transferred
        checksum: CRC sent to the console (None if the upload did not get that far)
        warnings: Non-blocking issues encountered
        errors: Blocking errors that caused failure
        metadata: Additional operation-specific data
        logs: Captured log lines from the operation
    """
    ok: bool
    operation: str
    port: str = ""
    bytes_len: int = 0
    padded_len: int = 0
    checksum: Optional[int] = None
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)
    logs: List[str] = field(default_factory=list)

    def add_warning(self, message: str) -> None:
        self.warnings.append(message)

    def add_error(self, message: str) -> None:
        """Add an error message and mark result as failed."""
        self.errors.append(message)
        self.ok = False

    def to_summary(self) -> str:
        """Human-readable summary for CLI output or logging."""
        status = "SUCCESS" if self.ok else "FAILED"
        lines = [f"[{status}] {self.operation}"]

        if self.port:
            lines.append(f"  Port: {self.port}")
        if self.bytes_len:
            lines.append(f"  Bytes: {self.bytes_len:,} (padded {self.padded_len:,})")
        if self.checksum is not None:
            lines.append(f"  CRC: 0x{self.checksum:04X}")

        if self.warnings:
            lines.append("  Warnings:")
            for warn in self.warnings:
                lines.append(f"    - {warn}")

        if self.errors:
            lines.append("  Errors:")
            for err in self.errors:
                lines.append(f"    - {err}")

        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "ok": self.ok,
            "operation": self.operation,
            "port": self.port,
            "bytes_len": self.bytes_len,
            "padded_len": self.padded_len,
            "checksum": self.checksum,
            "warnings": self.warnings,
            "errors": self.errors,
            "metadata": self.metadata,
            "logs": self.logs,
        }

    @classmethod
    def failure(
        cls,
        operation: str,
        error: str,
        **kwargs,
    ) -> "OperationResult":
        """Create a failed result."""
        result = cls(ok=False, operation=operation, **kwargs)
        result.errors.append(error)
        return result
