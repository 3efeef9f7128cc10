"""
encmatrix: integer matrix arithmetic on a remote evaluator under batched BFV encryption.
"""
__version__ = "1.0.0"
