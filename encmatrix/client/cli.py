"""
Command line client for the encmatrix evaluator
"""
import argparse
import asyncio
import sys
from typing import List

import numpy as np

from ..common.errors import EncMatrixError, ValidationError
from ..common.logging_config import setup_service_logging
from ..config import get_settings
from ..matrix.codec import format_matrix
from ..matrix.framing import FRAMING_LENGTH_PREFIXED, FRAMINGS
from .client import MatrixClient


def parse_matrix(text: str, size_max: int) -> np.ndarray:
    """Parse ``"1,2;3,4"`` (rows separated by ';') into a matrix."""
    try:
        rows: List[List[int]] = [
            [int(v) for v in row.split(",")] for row in text.strip().strip(";").split(";")
        ]
    except ValueError as e:
        raise ValidationError(f"Invalid matrix '{text}': {e}") from e

    if any(len(row) != len(rows[0]) for row in rows):
        raise ValidationError(f"Invalid matrix '{text}': rows have different lengths")
    matrix = np.array(rows, dtype=np.int64)
    if max(matrix.shape) > size_max:
        raise ValidationError(f"Matrix dimensions are limited to {size_max}, got {matrix.shape}")
    return matrix


def check_shapes(command: str, a: np.ndarray, b: np.ndarray):
    if command == "product":
        if a.shape[1] != b.shape[0]:
            raise ValidationError(f"Product needs cols(A) == rows(B), got {a.shape} and {b.shape}")
    elif a.shape != b.shape:
        raise ValidationError(f"{command} needs equal shapes, got {a.shape} and {b.shape}")


async def run(args) -> np.ndarray:
    async with MatrixClient(args.url) as client:
        if args.command == "add":
            return await client.add(args.a, args.b)
        if args.command == "subtract":
            return await client.subtract(args.a, args.b)
        if args.command == "multiply":
            return await client.multiply(args.a, args.b)
        return await client.matrix_product(args.a, args.b, framing=args.framing)


def main(argv=None):
    """Main CLI entry point"""
    config = get_settings()
    parser = argparse.ArgumentParser(
        description='Encrypted matrix arithmetic on a remote evaluator',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Element-wise sum of two 2x2 matrices
  %(prog)s add --a "1,2;3,4" --b "5,6;7,8"

  # Matrix by vector product
  %(prog)s product --a "1,2;3,4" --b "5;6"
        """
    )
    parser.add_argument('command', choices=['add', 'subtract', 'multiply', 'product'],
                        help='Operation to run')
    parser.add_argument('--a', required=True, help='First operand, rows separated by ";"')
    parser.add_argument('--b', required=True, help='Second operand, rows separated by ";"')
    parser.add_argument('--url', default=config.evaluator_url, help='Evaluator base URL')
    parser.add_argument('--framing', choices=FRAMINGS, default=FRAMING_LENGTH_PREFIXED,
                        help='Framing of the diagonal set (product only)')
    args = parser.parse_args(argv)

    setup_service_logging("encmatrix")

    try:
        args.a = parse_matrix(args.a, config.matrix_size_max)
        args.b = parse_matrix(args.b, config.matrix_size_max)
        check_shapes(args.command, args.a, args.b)
        result = asyncio.run(run(args))
    except EncMatrixError as e:
        print(f"\nError: {e.message}", file=sys.stderr)
        return 1

    print("A:")
    print(format_matrix(args.a), end="")
    print("B:")
    print(format_matrix(args.b), end="")
    print("Result:")
    print(format_matrix(result), end="")
    return 0


if __name__ == "__main__":
    sys.exit(main())
