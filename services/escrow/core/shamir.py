"""
Shamir Secret Sharing
=====================

(t, n) threshold sharing over GF(p) with p = 2^521 - 1.

Any t points reconstruct the secret by Lagrange interpolation at x = 0;
t - 1 points are consistent with every possible secret.

Version: 0.1.0
"""

import secrets

# Mersenne prime M521, comfortably larger than any 256-bit key
PRIME = 2**521 - 1


def _eval_polynomial(coefficients: list[int], x: int) -> int:
    """Horner evaluation mod PRIME."""
    result = 0
    for coefficient in reversed(coefficients):
        result = (result * x + coefficient) % PRIME
    return result


def split_secret(secret: int, total_shares: int, threshold: int) -> list[tuple[int, int]]:
    """
    Split a secret into `total_shares` points.

    Args:
        secret: Integer secret, 0 <= secret < PRIME
        total_shares: Number of shares (n)
        threshold: Shares required to reconstruct (t)

    Returns:
        List of (x, y) points with x = 1..n
    """
    if not 0 <= secret < PRIME:
        raise ValueError("Secret out of range for the sharing field")
    if threshold < 1 or threshold > total_shares:
        raise ValueError("Threshold must be between 1 and total_shares")

    coefficients = [secret] + [secrets.randbelow(PRIME) for _ in range(threshold - 1)]
    return [(x, _eval_polynomial(coefficients, x)) for x in range(1, total_shares + 1)]


def combine_shares(points: list[tuple[int, int]]) -> int:
    """
    Reconstruct the secret from distinct points.

    The caller is responsible for passing at least `threshold` authentic
    points; with fewer, the result is an unrelated field element.
    """
    xs = [x for x, _ in points]
    if len(set(xs)) != len(xs):
        raise ValueError("Duplicate share indices")
    if any(x % PRIME == 0 for x in xs):
        raise ValueError("Share index 0 is reserved for the secret")

    secret = 0
    for i, (xi, yi) in enumerate(points):
        numerator = 1
        denominator = 1
        for j, (xj, _) in enumerate(points):
            if i == j:
                continue
            numerator = (numerator * -xj) % PRIME
            denominator = (denominator * (xi - xj)) % PRIME
        lagrange = numerator * pow(denominator, -1, PRIME)
        secret = (secret + yi * lagrange) % PRIME

    return secret
