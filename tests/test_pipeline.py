"""
End-to-End Pipeline Tests
=========================
Each evaluation runs from plaintext inputs to a ToleranceReport with its
own key material and preset configuration.
"""

import logging

import numpy as np
import pytest

from fhe_tensor.config import PipelineConfig
from fhe_tensor.errors import InsufficientDepthError, ParameterInsufficientError
from fhe_tensor.pipeline import CONV_INPUT, EvaluationPipeline
from fhe_tensor.polynomial_evaluator import SQUARE
from fhe_tensor.security_logger import OperationLog
from fhe_tensor.tensor_codec import Kernel, PlaintextTensor


@pytest.fixture(scope="module")
def matmul_pipeline():
    return EvaluationPipeline(PipelineConfig.for_matmul(max_workers=2))


@pytest.fixture(scope="module")
def convolution_pipeline():
    return EvaluationPipeline(PipelineConfig.for_convolution())


@pytest.fixture(scope="module")
def activation_pipeline():
    return EvaluationPipeline(PipelineConfig.for_activation(max_workers=4))


class TestMatmulPipeline:

    def test_worked_example(self, matmul_pipeline):
        result = matmul_pipeline.run_matmul()

        assert result.success
        assert result.required_depth == 1
        report = result.reports[0]
        assert report.tolerance == 1e-6
        assert np.allclose(report.decrypted_values(), [[19.0, 22.0], [43.0, 50.0]],
                           atol=1e-6)

    def test_elementwise_variant(self, matmul_pipeline):
        result = matmul_pipeline.run_matmul(packed=False)
        assert result.success

    def test_keys_reused_across_runs(self, matmul_pipeline):
        keys = matmul_pipeline.setup()
        matmul_pipeline.run_matmul()
        assert matmul_pipeline.keys is keys

    def test_audit(self, matmul_pipeline):
        audit = matmul_pipeline.run_matmul().audit
        assert audit['total_log_entries'] > 0
        assert audit['violations'] == []
        assert audit['entities'] == ['encoder', 'evaluator', 'verifier']
        assert audit['evaluator_audit']['plaintext_access'] is False


class TestConvolutionPipeline:

    def test_worked_example(self, convolution_pipeline):
        result = convolution_pipeline.run_convolution()

        assert result.success
        report = result.reports[0]
        assert len(report.entries) == 4
        assert np.allclose(report.decrypted_values(), [[6.0, 8.0], [12.0, 14.0]], atol=1e-4)

    def test_custom_inputs(self, convolution_pipeline):
        x = PlaintextTensor([[0.5, -1.0, 2.0, 0.0], [1.5, 2.5, -0.5, 1.0]])
        kernel = Kernel([[2.0, -1.0]])
        result = convolution_pipeline.run_convolution(x, kernel, stride=1)

        assert result.success
        assert result.reports[0].shape == (2, 3)

    def test_tolerance_failure_is_reported_not_raised(self):
        config = PipelineConfig.for_convolution(convolution=1e-15)
        result = EvaluationPipeline(config).run_convolution()

        assert not result.success
        assert len(result.reports[0].entries) == 4
        assert any("FAILED" in line for line in result.format_lines())


class TestActivationPipeline:

    def test_square_and_silu(self, activation_pipeline):
        messages = []
        activation_pipeline.log_callback = messages.append
        result = activation_pipeline.run_activation()

        assert result.success, "\n".join(result.format_lines())
        assert result.required_depth == 4
        assert [r.tolerance for r in result.reports] == [1e-4, 1e-3, 1e-3]

        square = result.reports[1]
        assert np.allclose(square.decrypted_values(), [[36.0, 64.0], [144.0, 196.0]],
                           atol=1e-3)
        assert any("silu" in m for m in messages)

    def test_single_polynomial(self, activation_pipeline):
        result = activation_pipeline.run_activation(polynomials=(SQUARE,))
        assert result.success
        assert len(result.reports) == 2
        assert result.required_depth == 3

    def test_no_polynomials(self, activation_pipeline):
        with pytest.raises(ValueError):
            activation_pipeline.run_activation(polynomials=())

    def test_warns_outside_approximation_range(self, activation_pipeline, caplog):
        # Convolution outputs 6..14 lie outside SiLU's (-4, 4) range
        with caplog.at_level(logging.WARNING, logger="fhe_tensor.pipeline"):
            activation_pipeline.run_activation()
        assert any("silu" in r.getMessage() and "outside" in r.getMessage()
                   for r in caplog.records)
        assert not any(r.getMessage().startswith("square") for r in caplog.records)


class TestSharedOperationLog:
    """A log handed to the pipeline is the one that gets written"""

    def test_caller_log_is_used(self):
        log = OperationLog()
        pipeline = EvaluationPipeline(PipelineConfig.for_convolution(), log)
        pipeline.run_convolution()

        assert pipeline.operation_log is log
        assert len(log) > 0
        assert log.max_level() == 1


class TestValueRange:
    """Results larger than the scale's headroom are rejected before encryption"""

    def test_scale_too_large_for_silu_output(self):
        # 2^(60 - 50 - 1) = 512 < |silu(14)| ~ 744
        pipeline = EvaluationPipeline(PipelineConfig.for_activation(scale_bits=50))

        with pytest.raises(ParameterInsufficientError) as exc_info:
            pipeline.run_activation()

        assert not isinstance(exc_info.value, InsufficientDepthError)
        assert "512" in str(exc_info.value)
        assert pipeline.keys is None
        assert len(pipeline.operation_log) == 0

    def test_inputs_too_large_for_preset(self):
        pipeline = EvaluationPipeline(PipelineConfig.for_activation())
        large = PlaintextTensor(CONV_INPUT.values * 10)

        with pytest.raises(ParameterInsufficientError):
            pipeline.run_activation(large)
        assert pipeline.keys is None

    def test_matmul_and_convolution_checked(self):
        big = PlaintextTensor([[1000.0, 0.0], [0.0, 1.0]])
        config = PipelineConfig.for_matmul()

        with pytest.raises(ParameterInsufficientError):
            EvaluationPipeline(config).run_matmul(big, big)
        with pytest.raises(ParameterInsufficientError):
            EvaluationPipeline(PipelineConfig.for_convolution()).run_convolution(
                big, Kernel([[1.0]]))

    def test_bound_leaves_presets_runnable(self):
        pipeline = EvaluationPipeline(PipelineConfig.for_activation())
        pipeline.check_value_range("silu", PlaintextTensor([[-744.4, 196.0]]))
