"""
Shared fixtures.

Key generation dominates test time, so key material is built once per
test module for each preset.
"""

import pytest

from fhe_tensor.config import PipelineConfig
from fhe_tensor.fhe_engine import TensorFHE
from fhe_tensor.key_management import generate_keys
from fhe_tensor.security_logger import OperationLog
from fhe_tensor.tensor_codec import TensorCodec


@pytest.fixture(scope="module")
def matmul_keys():
    return generate_keys(PipelineConfig.for_matmul().scheme)


@pytest.fixture(scope="module")
def convolution_keys():
    return generate_keys(PipelineConfig.for_convolution().scheme)


@pytest.fixture(scope="module")
def activation_keys():
    return generate_keys(PipelineConfig.for_activation().scheme)


@pytest.fixture
def operation_log():
    return OperationLog()


@pytest.fixture
def matmul_fhe(matmul_keys, operation_log):
    return TensorFHE(matmul_keys, operation_log)


@pytest.fixture
def convolution_fhe(convolution_keys, operation_log):
    return TensorFHE(convolution_keys, operation_log)


@pytest.fixture
def activation_fhe(activation_keys, operation_log):
    return TensorFHE(activation_keys, operation_log)


@pytest.fixture
def codec(convolution_fhe):
    return TensorCodec(convolution_fhe)
