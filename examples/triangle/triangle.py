"""Classify triangles by the lengths of their sides."""

from __future__ import annotations


def classify(a: float, b: float, c: float) -> str:
    if a <= 0 or b <= 0 or c <= 0:
        return "invalid"
    if a + b <= c or a + c <= b or b + c <= a:
        return "invalid"
    if a == b and b == c:
        return "equilateral"
    if a == b or b == c or a == c:
        return "isosceles"
    return "scalene"


def largest_angle_kind(a: float, b: float, c: float) -> str:
    x, y, z = sorted((a, b, c))
    lhs, rhs = x * x + y * y, z * z
    return "right" if lhs == rhs else ("acute" if lhs > rhs else "obtuse")
