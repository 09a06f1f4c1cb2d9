"""
Encrypted Tensor Evaluation - Command Line Runner
=================================================

Usage:
    fhe-tensor matmul                 # C = A x B on encrypted matrices
    fhe-tensor convolution            # 2D convolution with a plaintext kernel
    fhe-tensor activation             # convolution + square / SiLU surrogates
    fhe-tensor all --workers 2        # every evaluation, one audit trail

Exit codes: 0 when every position passes, 1 on any tolerance failure,
2 on a scheme or configuration error.
"""

import argparse
import logging
import sys
from typing import List, Optional

from .config import PipelineConfig
from .errors import FHETensorError
from .pipeline import EvaluationPipeline, EvaluationResult
from .security_logger import OperationLog

EXIT_OK = 0
EXIT_TOLERANCE_FAILURE = 1
EXIT_CONFIG_ERROR = 2

PRESETS = {
    'matmul': PipelineConfig.for_matmul,
    'convolution': PipelineConfig.for_convolution,
    'activation': PipelineConfig.for_activation,
}

TITLES = {
    'matmul': "Homomorphic Matrix Multiplication",
    'convolution': "Encrypted 2D Convolution",
    'activation': "Encrypted Non-Linear Functions (polynomial surrogates)",
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='fhe-tensor',
        description="Matrix multiplication, convolution and polynomial activations "
                    "over CKKS-encrypted tensors",
    )
    parser.add_argument('evaluation', choices=list(PRESETS) + ['all'],
                        help='Evaluation to run')
    parser.add_argument('--depth', type=int, default=None,
                        help='Multiplicative depth (default: minimum for the evaluation)')
    parser.add_argument('--scale-bits', type=int, default=None,
                        help='Bits of fixed-point precision (default: per evaluation)')
    parser.add_argument('--tolerance', type=float, default=None,
                        help='Absolute error accepted per position (default: per algorithm)')
    parser.add_argument('--workers', type=int, default=None,
                        help='Worker threads for independent output cells')
    parser.add_argument('--audit-log', type=str, default=None,
                        help='Append the operation audit trail to this JSONL file')
    parser.add_argument('--verbose', '-v', action='store_true',
                        help='Enable debug logging')
    return parser


def build_config(evaluation: str, args: argparse.Namespace) -> PipelineConfig:
    overrides = {
        'multiplicative_depth': args.depth,
        'scale_bits': args.scale_bits,
        'max_workers': args.workers,
        'audit_log_path': args.audit_log,
    }
    if args.tolerance is not None:
        overrides.update(matmul=args.tolerance,
                         convolution=args.tolerance,
                         polynomial=args.tolerance)
    return PRESETS[evaluation](**overrides)


def run_evaluation(evaluation: str,
                   config: PipelineConfig,
                   operation_log: OperationLog) -> EvaluationResult:
    pipeline = EvaluationPipeline(config, operation_log,
                                  log_callback=lambda message: print(f"  {message}"))
    if evaluation == 'matmul':
        return pipeline.run_matmul()
    if evaluation == 'convolution':
        return pipeline.run_convolution()
    return pipeline.run_activation()


def print_audit(operation_log: OperationLog):
    audit = operation_log.generate_audit_report()
    print("\nSECURITY AUDIT")
    print("-" * 40)
    print(f"  Total operations logged: {audit['total_log_entries']}")
    print(f"  Entities: {audit['entities']}")
    print(f"  Deepest level reached: {audit['max_level']}")
    print(f"  Evaluator plaintext access: {audit['evaluator_audit']['plaintext_access']}")
    print(f"  Violations: {len(audit['violations'])}")
    print(f"\n  CONCLUSION: {audit['conclusion']}")


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )

    evaluations = list(PRESETS) if args.evaluation == 'all' else [args.evaluation]

    operation_log = OperationLog(args.audit_log)
    all_passed = True

    for evaluation in evaluations:
        print("=" * 70)
        print(TITLES[evaluation])
        print("=" * 70)
        try:
            config = build_config(evaluation, args)
            result = run_evaluation(evaluation, config, operation_log)
        except (FHETensorError, ValueError) as e:
            print(f"\nERROR: {e}", file=sys.stderr)
            return EXIT_CONFIG_ERROR

        print()
        for line in result.format_lines():
            print(line)
        all_passed = all_passed and result.success

    print_audit(operation_log)
    return EXIT_OK if all_passed else EXIT_TOLERANCE_FAILURE


if __name__ == "__main__":
    sys.exit(main())
