"""
Operation Audit Log
===================
Records every homomorphic operation of a run.

Purpose:
- Show that evaluators (engine, polynomial evaluator) only ever handle
  ciphertext and public parameters such as kernel weights or coefficients
- Show that the secret key is only used by the verifier
- Provide the per-operation level trail used for depth profiling

Entities:
- 'encoder'   : encrypts plaintext tensors (sees its own plaintext)
- 'evaluator' : runs the encrypted algorithms (must never see plaintext)
- 'verifier'  : decrypts results and compares them (authorized)
"""

import json
import threading
from collections import defaultdict
from dataclasses import dataclass, asdict
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import List, Dict, Any, Optional


class DataType(Enum):
    """Classification of data handled in an operation"""
    CIPHERTEXT = "ciphertext"      # Encrypted data - safe
    PLAINTEXT = "plaintext"        # Raw tensor values - privacy risk
    PUBLIC_PARAM = "public_param"  # Kernel weights, coefficients - safe
    METADATA = "metadata"          # Shapes, levels - safe


class OperationType(Enum):
    """Scheme operations recorded by the log"""
    KEYGEN = "keygen"
    ENCRYPT = "encrypt"
    DECRYPT = "decrypt"
    ADD = "add"
    ADD_PLAIN = "add_plain"
    MULTIPLY_PLAIN = "multiply_plain"
    MULTIPLY_CIPHER = "multiply_cipher"
    INNER_PRODUCT = "inner_product"


@dataclass
class OperationLogEntry:
    """Single audit log entry"""
    timestamp: str
    entity: str
    operation: str
    data_types: List[str]
    level: int           # Level of the produced handle (0 for fresh/none)
    is_safe: bool
    details: Dict[str, Any]
    sequence_id: int

    def to_dict(self) -> dict:
        return asdict(self)


class OperationLog:
    """
    Append-only, thread-safe record of scheme operations.

    Cells are computed on a worker pool, so entries from different cells
    interleave; sequence ids give the global order.
    """

    def __init__(self, log_file: Optional[str] = None):
        """
        Args:
            log_file: Optional JSONL file path to persist entries
        """
        self._entries: List[OperationLogEntry] = []
        self._lock = threading.Lock()
        self._sequence = 0
        self.log_file = Path(log_file) if log_file else None

        if self.log_file and self.log_file.exists():
            self._load_from_file()

    def log(self,
            entity: str,
            operation: OperationType,
            data_types: List[DataType],
            level: int = 0,
            details: Dict[str, Any] = None) -> OperationLogEntry:
        """
        Record one operation.

        Args:
            entity: 'encoder', 'evaluator' or 'verifier'
            operation: Operation performed
            data_types: Kinds of data involved
            level: Multiplicative level of the resulting handle
            details: Extra context (shape, position, scalar, ...)
        """
        with self._lock:
            self._sequence += 1

            is_safe = True
            if entity == 'evaluator' and DataType.PLAINTEXT in data_types:
                is_safe = False
            if operation is OperationType.DECRYPT and entity != 'verifier':
                is_safe = False

            entry = OperationLogEntry(
                timestamp=datetime.now().isoformat(),
                entity=entity,
                operation=operation.value,
                data_types=[dt.value for dt in data_types],
                level=level,
                is_safe=is_safe,
                details=details or {},
                sequence_id=self._sequence
            )
            self._entries.append(entry)

            if self.log_file:
                self._append_to_file(entry)

            return entry

    def get_all_entries(self) -> List[OperationLogEntry]:
        with self._lock:
            return list(self._entries)

    def get_entries_for_entity(self, entity: str) -> List[OperationLogEntry]:
        return [e for e in self.get_all_entries() if e.entity == entity]

    def get_entries_for_operation(self, operation: OperationType) -> List[OperationLogEntry]:
        return [e for e in self.get_all_entries() if e.operation == operation.value]

    def get_violations(self) -> List[OperationLogEntry]:
        return [e for e in self.get_all_entries() if not e.is_safe]

    def verify_no_violations(self) -> bool:
        return len(self.get_violations()) == 0

    def max_level(self) -> int:
        """Deepest level any handle reached during the run"""
        return max((e.level for e in self.get_all_entries()), default=0)

    def depth_profile(self) -> Dict[Any, int]:
        """
        Deepest level reached per output position.

        Only entries carrying a 'position' detail are counted.
        """
        profile: Dict[Any, int] = defaultdict(int)
        for entry in self.get_all_entries():
            position = entry.details.get('position')
            if position is None:
                continue
            key = tuple(position)
            profile[key] = max(profile[key], entry.level)
        return dict(profile)

    def get_evaluator_summary(self) -> Dict[str, Any]:
        """Summary proving the evaluator never handled plaintext"""
        evaluator_entries = self.get_entries_for_entity('evaluator')

        data_types_seen = set()
        operation_counts: Dict[str, int] = defaultdict(int)
        for entry in evaluator_entries:
            data_types_seen.update(entry.data_types)
            operation_counts[entry.operation] += 1

        return {
            'total_operations': len(evaluator_entries),
            'operation_counts': dict(operation_counts),
            'data_types_handled': sorted(data_types_seen),
            'plaintext_access': DataType.PLAINTEXT.value in data_types_seen,
            'violations': len([e for e in evaluator_entries if not e.is_safe]),
        }

    def generate_audit_report(self) -> Dict[str, Any]:
        evaluator_summary = self.get_evaluator_summary()
        violations = self.get_violations()

        return {
            'report_generated': datetime.now().isoformat(),
            'total_log_entries': len(self.get_all_entries()),
            'entities': sorted(set(e.entity for e in self.get_all_entries())),
            'max_level': self.max_level(),
            'evaluator_audit': evaluator_summary,
            'violations': [e.to_dict() for e in violations],
            'conclusion': (
                "PRIVACY PRESERVED: evaluator handled ciphertext only."
                if not violations
                else "PRIVACY VIOLATION: plaintext or secret key used outside the verifier!"
            )
        }

    def _append_to_file(self, entry: OperationLogEntry):
        with open(self.log_file, 'a') as f:
            f.write(json.dumps(entry.to_dict()) + '\n')

    def _load_from_file(self):
        with open(self.log_file, 'r') as f:
            for line in f:
                if line.strip():
                    data = json.loads(line)
                    self._entries.append(OperationLogEntry(**data))
                    self._sequence = max(self._sequence, data['sequence_id'])

    def clear(self):
        """Clear all entries (for testing)"""
        with self._lock:
            self._entries.clear()
            self._sequence = 0
            if self.log_file and self.log_file.exists():
                self.log_file.unlink()

    def __len__(self) -> int:
        return len(self.get_all_entries())
