"""
Operation Log Tests
===================
Audit trail: violation detection, depth profile and JSONL persistence.
"""

import json

import pytest

from fhe_tensor.security_logger import DataType, OperationLog, OperationType


class TestOperationLog:
    """Tests for OperationLog"""

    @pytest.fixture
    def log(self):
        return OperationLog()

    def test_sequence_ids_are_ordered(self, log):
        first = log.log('encoder', OperationType.ENCRYPT, [DataType.PLAINTEXT])
        second = log.log('evaluator', OperationType.ADD, [DataType.CIPHERTEXT])
        assert second.sequence_id == first.sequence_id + 1
        assert len(log) == 2

    def test_evaluator_plaintext_is_violation(self, log):
        log.log('evaluator', OperationType.ADD, [DataType.CIPHERTEXT])
        assert log.verify_no_violations()

        log.log('evaluator', OperationType.MULTIPLY_PLAIN,
                [DataType.CIPHERTEXT, DataType.PLAINTEXT])
        violations = log.get_violations()
        assert len(violations) == 1
        assert violations[0].entity == 'evaluator'

    def test_public_parameters_are_not_violations(self, log):
        log.log('evaluator', OperationType.MULTIPLY_PLAIN,
                [DataType.CIPHERTEXT, DataType.PUBLIC_PARAM], level=1)
        assert log.verify_no_violations()

    def test_only_verifier_may_decrypt(self, log):
        log.log('verifier', OperationType.DECRYPT, [DataType.CIPHERTEXT, DataType.PLAINTEXT])
        assert log.verify_no_violations()

        log.log('encoder', OperationType.DECRYPT, [DataType.CIPHERTEXT, DataType.PLAINTEXT])
        assert not log.verify_no_violations()

    def test_depth_profile(self, log):
        log.log('evaluator', OperationType.MULTIPLY_PLAIN, [DataType.CIPHERTEXT],
                level=1, details={'position': (0, 0)})
        log.log('evaluator', OperationType.MULTIPLY_CIPHER, [DataType.CIPHERTEXT],
                level=2, details={'position': (0, 0)})
        log.log('evaluator', OperationType.MULTIPLY_PLAIN, [DataType.CIPHERTEXT],
                level=1, details={'position': (0, 1)})
        log.log('encoder', OperationType.ENCRYPT, [DataType.PLAINTEXT], level=0)

        assert log.depth_profile() == {(0, 0): 2, (0, 1): 1}
        assert log.max_level() == 2

    def test_entity_and_operation_filters(self, log):
        log.log('encoder', OperationType.ENCRYPT, [DataType.PLAINTEXT, DataType.CIPHERTEXT])
        log.log('evaluator', OperationType.ADD, [DataType.CIPHERTEXT])
        log.log('evaluator', OperationType.ADD, [DataType.CIPHERTEXT])

        assert len(log.get_entries_for_entity('evaluator')) == 2
        assert len(log.get_entries_for_operation(OperationType.ENCRYPT)) == 1

    def test_audit_report(self, log):
        log.log('encoder', OperationType.ENCRYPT, [DataType.PLAINTEXT, DataType.CIPHERTEXT])
        log.log('evaluator', OperationType.INNER_PRODUCT, [DataType.CIPHERTEXT], level=1)
        log.log('verifier', OperationType.DECRYPT, [DataType.CIPHERTEXT, DataType.PLAINTEXT],
                level=1)

        report = log.generate_audit_report()
        assert report['total_log_entries'] == 3
        assert report['entities'] == ['encoder', 'evaluator', 'verifier']
        assert report['evaluator_audit']['plaintext_access'] is False
        assert report['evaluator_audit']['operation_counts'] == {'inner_product': 1}
        assert report['violations'] == []
        assert report['conclusion'].startswith("PRIVACY PRESERVED")

    def test_jsonl_persistence(self, tmp_path):
        path = tmp_path / "audit.jsonl"
        log = OperationLog(str(path))
        log.log('evaluator', OperationType.ADD, [DataType.CIPHERTEXT], level=1,
                details={'position': [1, 0]})
        log.log('evaluator', OperationType.ADD, [DataType.CIPHERTEXT], level=1)

        lines = path.read_text().splitlines()
        assert len(lines) == 2
        assert json.loads(lines[0])['operation'] == 'add'

        reloaded = OperationLog(str(path))
        assert len(reloaded) == 2
        assert reloaded.depth_profile() == {(1, 0): 1}

        entry = reloaded.log('verifier', OperationType.DECRYPT, [DataType.CIPHERTEXT])
        assert entry.sequence_id == 3

    def test_clear(self, tmp_path):
        path = tmp_path / "audit.jsonl"
        log = OperationLog(str(path))
        log.log('encoder', OperationType.ENCRYPT, [DataType.PLAINTEXT])
        log.clear()
        assert len(log) == 0
        assert not path.exists()
