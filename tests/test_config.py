"""
Configuration Tests
===================
Scheme parameter validation, ring degree selection and presets.
"""

import pytest

from fhe_tensor.config import PipelineConfig, SchemeParameters, Tolerances
from fhe_tensor.errors import KeyGenerationError, ParameterInsufficientError


class TestSchemeParameters:
    """Tests for SchemeParameters"""

    def test_modulus_chain_layout(self):
        params = SchemeParameters(multiplicative_depth=3, scale_bits=40, first_mod_bits=60)
        assert params.coeff_mod_bit_sizes == [60, 40, 40, 40, 60]
        assert params.global_scale == 2 ** 40

    def test_value_bound(self):
        params = SchemeParameters(scale_bits=45, first_mod_bits=60)
        assert params.value_bound == 2 ** 14

    def test_smallest_secure_degree_selected(self):
        # 60 + 40 + 60 = 160 bits fits 8192 (218) but not 4096 (109)
        params = SchemeParameters(multiplicative_depth=1, scale_bits=40)
        assert params.resolve_poly_modulus_degree() == 8192

        # 60 + 4 * 45 + 60 = 300 bits needs 16384
        params = SchemeParameters(multiplicative_depth=4, scale_bits=45)
        assert params.resolve_poly_modulus_degree() == 16384

    def test_explicit_degree_checked_against_security_table(self):
        params = SchemeParameters(multiplicative_depth=4, scale_bits=45,
                                  poly_modulus_degree=8192)
        with pytest.raises(KeyGenerationError):
            params.resolve_poly_modulus_degree()

    def test_unsupported_degree(self):
        params = SchemeParameters(poly_modulus_degree=5000)
        with pytest.raises(KeyGenerationError):
            params.resolve_poly_modulus_degree()

    def test_chain_too_long_for_any_ring(self):
        params = SchemeParameters(multiplicative_depth=30, scale_bits=40)
        with pytest.raises(KeyGenerationError):
            params.resolve_poly_modulus_degree()

    @pytest.mark.parametrize("kwargs", [
        {'multiplicative_depth': 0},
        {'scale_bits': 10},
        {'scale_bits': 60, 'first_mod_bits': 60},
        {'first_mod_bits': 70},
        {'batch_size': 0},
    ])
    def test_invalid_parameters(self, kwargs):
        with pytest.raises(KeyGenerationError):
            SchemeParameters(**kwargs).validate()

    def test_batch_larger_than_slots(self):
        params = SchemeParameters(multiplicative_depth=1, batch_size=10000)
        with pytest.raises(ParameterInsufficientError):
            params.resolve_poly_modulus_degree()

    def test_to_dict_includes_chain(self):
        data = SchemeParameters(multiplicative_depth=2).to_dict()
        assert data['coeff_mod_bit_sizes'] == [60, 40, 40, 60]
        assert data['multiplicative_depth'] == 2


class TestTolerances:
    """Tests for per-algorithm tolerances"""

    def test_defaults(self):
        tolerances = Tolerances()
        assert tolerances.for_algorithm('matmul') == 1e-6
        assert tolerances.for_algorithm('convolution') == 1e-4
        assert tolerances.for_algorithm('polynomial') == 1e-3

    def test_unknown_algorithm(self):
        with pytest.raises(ValueError):
            Tolerances().for_algorithm('softmax')


class TestPipelineConfig:
    """Tests for evaluation presets"""

    def test_presets(self):
        matmul = PipelineConfig.for_matmul()
        assert matmul.scheme.multiplicative_depth == 1
        assert matmul.scheme.rotation_keys is True

        convolution = PipelineConfig.for_convolution()
        assert convolution.scheme.multiplicative_depth == 1
        assert convolution.scheme.rotation_keys is False

        activation = PipelineConfig.for_activation()
        assert activation.scheme.multiplicative_depth == 4

    def test_overrides_route_to_the_right_section(self):
        config = PipelineConfig.for_convolution(multiplicative_depth=3,
                                                convolution=1e-2,
                                                max_workers=2)
        assert config.scheme.multiplicative_depth == 3
        assert config.tolerances.convolution == 1e-2
        assert config.max_workers == 2

    def test_none_overrides_are_ignored(self):
        config = PipelineConfig.for_matmul(multiplicative_depth=None, scale_bits=None)
        assert config.scheme.multiplicative_depth == 1
        assert config.scheme.scale_bits == 50

    def test_unknown_override(self):
        with pytest.raises(ValueError):
            PipelineConfig.for_matmul(bootstrapping=True)

    def test_presets_do_not_share_state(self):
        a = PipelineConfig.for_activation(multiplicative_depth=6)
        b = PipelineConfig.for_activation()
        assert a.scheme.multiplicative_depth == 6
        assert b.scheme.multiplicative_depth == 4
