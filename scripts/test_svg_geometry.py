"""
Test suite for the geometry helpers: svg_transforms.py, svg_paths.py and svg_densify.py.
"""

import math
import sys
import unittest

from svg_densify import densify_path
from svg_paths import (
    ArcTo, Close, CubicTo, LineTo, MoveTo, QuadTo,
    parse_points, path_vertices, points_to_path, serialize, to_absolute, transform_path,
)
from svg_transforms import (
    IDENTITY_MATRIX,
    apply_transform, compose_transforms, format_number, is_identity, parse_transform, rotation,
)


class TestAffineAlgebra(unittest.TestCase):
    """Matrix composition and application."""

    def assertPointAlmostEqual(self, actual, expected, places=9):
        self.assertAlmostEqual(actual[0], expected[0], places=places)
        self.assertAlmostEqual(actual[1], expected[1], places=places)

    def test_identity_leaves_points_unchanged(self):
        """Test the identity matrix."""
        for point in [(0.0, 0.0), (3.5, -2.25), (-1e6, 42.0)]:
            self.assertEqual(apply_transform(IDENTITY_MATRIX, *point), point)

    def test_composition_is_associative(self):
        """Test associativity of matrix composition."""
        m1 = (1.2, 0.3, -0.4, 0.9, 5.0, -7.0)
        m2 = parse_transform("rotate(33 4 5)")
        m3 = parse_transform("scale(2, -3) skewX(10)")
        left = compose_transforms(compose_transforms(m1, m2), m3)
        right = compose_transforms(m1, compose_transforms(m2, m3))
        for a, b in zip(left, right):
            self.assertAlmostEqual(a, b, places=9)

    def test_inner_transform_applies_first(self):
        """Test composition order."""
        matrix = compose_transforms(outer=parse_transform("translate(10, 0)"), inner=parse_transform("scale(2)"))
        self.assertPointAlmostEqual(apply_transform(matrix, 1, 1), (12.0, 2.0))

    def test_full_rotation_about_any_pivot_is_identity(self):
        """Test a 360 degree rotation."""
        for pivot in [(0.0, 0.0), (10.0, -3.0), (-250.5, 88.0)]:
            matrix = rotation(360.0, *pivot)
            self.assertPointAlmostEqual(apply_transform(matrix, 7.0, 11.0), (7.0, 11.0))

    def test_rotation_pivot_is_fixed(self):
        """Test that the rotation pivot does not move."""
        matrix = parse_transform("rotate(90 5 5)")
        self.assertPointAlmostEqual(apply_transform(matrix, 5, 5), (5.0, 5.0))
        self.assertPointAlmostEqual(apply_transform(matrix, 6, 5), (5.0, 6.0))

    def test_is_identity(self):
        """Test identity detection."""
        self.assertTrue(is_identity(IDENTITY_MATRIX))
        self.assertFalse(is_identity(parse_transform("translate(1)")))
        self.assertTrue(is_identity(rotation(360.0), tolerance=1e-12))


class TestParseTransform(unittest.TestCase):
    """Transform attribute parsing."""

    def test_functions_compose_in_written_order(self):
        """Test a transform list."""
        matrix = parse_transform("translate(10) rotate(90)")
        x, y = apply_transform(matrix, 1, 0)
        self.assertAlmostEqual(x, 10.0)
        self.assertAlmostEqual(y, 1.0)

    def test_comma_separated_list(self):
        """Test a comma-separated transform list."""
        self.assertEqual(parse_transform("translate(1,2),scale(3)"), (3.0, 0.0, 0.0, 3.0, 1.0, 2.0))

    def test_translate_with_one_value(self):
        """Test translate with one argument."""
        self.assertEqual(parse_transform("translate(7)"), (1.0, 0.0, 0.0, 1.0, 7.0, 0.0))

    def test_uniform_scale(self):
        """Test scale with one argument."""
        self.assertEqual(parse_transform("scale(2.5)"), (2.5, 0.0, 0.0, 2.5, 0.0, 0.0))

    def test_matrix_function(self):
        """Test the matrix function."""
        self.assertEqual(parse_transform("matrix(1 2 3 4 5 6)"), (1.0, 2.0, 3.0, 4.0, 5.0, 6.0))

    def test_skew(self):
        """Test skewX and skewY."""
        a, b, c, d, e, f = parse_transform("skewX(45)")
        self.assertAlmostEqual(c, 1.0)
        a, b, c, d, e, f = parse_transform("skewY(45)")
        self.assertAlmostEqual(b, 1.0)

    def test_unknown_function_is_identity_with_warning(self):
        """Test an unknown transform function."""
        with self.assertLogs("svg_transforms", level="WARNING"):
            matrix = parse_transform("translate(5, 5) wobble(3)")
        self.assertEqual(matrix, (1.0, 0.0, 0.0, 1.0, 5.0, 5.0))

    def test_bad_arity_is_ignored(self):
        """Test a function with the wrong number of arguments."""
        with self.assertLogs("svg_transforms", level="WARNING"):
            self.assertEqual(parse_transform("matrix(1 2 3)"), IDENTITY_MATRIX)

    def test_empty_transform(self):
        """Test an empty transform attribute."""
        self.assertEqual(parse_transform(""), IDENTITY_MATRIX)
        self.assertEqual(parse_transform("   "), IDENTITY_MATRIX)


class TestFormatNumber(unittest.TestCase):
    """Number formatting for written coordinates."""

    def test_integral_values_have_no_decimal_point(self):
        """Test formatting whole numbers."""
        self.assertEqual(format_number(3.0), "3")
        self.assertEqual(format_number(-12), "-12")
        self.assertEqual(format_number(-0.0), "0")

    def test_fractional_values_round_trip(self):
        """Test formatting fractional numbers."""
        for value in [0.1, -2.5, 1 / 3, 1e-7]:
            self.assertEqual(float(format_number(value)), value)


class TestPathParsing(unittest.TestCase):
    """to_absolute and serialize."""

    def test_relative_commands_become_absolute(self):
        """Test absolutizing relative commands."""
        path = to_absolute("m 1 1 2 2 h 3 v -1 z l 1 0")
        self.assertEqual(path, [
            MoveTo((1.0, 1.0)),
            LineTo((3.0, 3.0)),
            LineTo((6.0, 3.0)),
            LineTo((6.0, 2.0)),
            Close(),
            LineTo((2.0, 1.0)),
        ])

    def test_compact_numbers(self):
        """Test numbers written without separators."""
        path = to_absolute("M10-5L.5.5")
        self.assertEqual(path, [MoveTo((10.0, -5.0)), LineTo((0.5, 0.5))])

    def test_exponent_numbers(self):
        """Test numbers with exponents."""
        path = to_absolute("M1e2,2.5E-1")
        self.assertEqual(path, [MoveTo((100.0, 0.25))])

    def test_compact_arc_flags(self):
        """Test arc flags written without separators."""
        path = to_absolute("M0 0 a1 1 0 0110 10")
        self.assertEqual(path[1], ArcTo(1.0, 1.0, 0.0, False, True, (10.0, 10.0)))

    def test_smooth_cubic_reflects_previous_cubic_control(self):
        """Test S after C."""
        path = to_absolute("M0 0 C 1 1 2 1 3 0 S 5 -1 6 0")
        self.assertEqual(path[2], CubicTo((4.0, -1.0), (5.0, -1.0), (6.0, 0.0)))

    def test_smooth_cubic_after_line_uses_current_point(self):
        """Test S after L."""
        path = to_absolute("M0 0 L 3 0 S 5 -1 6 0")
        self.assertEqual(path[2], CubicTo((3.0, 0.0), (5.0, -1.0), (6.0, 0.0)))

    def test_smooth_cubic_after_quadratic_does_not_reflect(self):
        """Test S after Q."""
        path = to_absolute("M0 0 Q 1 1 2 0 S 3 1 4 0")
        self.assertEqual(path[2].c1, (2.0, 0.0))

    def test_smooth_quadratic_chain(self):
        """Test a chain of T commands."""
        path = to_absolute("M0 0 Q 1 1 2 0 T 4 0 t 2 0")
        self.assertEqual(path[2], QuadTo((3.0, -1.0), (4.0, 0.0)))
        self.assertEqual(path[3], QuadTo((5.0, 1.0), (6.0, 0.0)))

    def test_relative_smooth_cubic(self):
        """Test relative s."""
        path = to_absolute("M0 0 c 1 1 2 1 3 0 s 2 -1 3 0")
        self.assertEqual(path[2], CubicTo((4.0, -1.0), (5.0, -1.0), (6.0, 0.0)))

    def test_to_absolute_is_idempotent_on_absolute_input(self):
        """Test absolutizing absolute path data."""
        raw = "M0 0 C 1 1 2 1 3 0 S 5 -1 6 0 Q 7 1 8 0 T 10 0 A 2 3 15 1 0 12 4 L 0.1 0.2 Z"
        once = to_absolute(raw)
        self.assertEqual(to_absolute(serialize(once)), once)

    def test_malformed_command_is_dropped(self):
        """Test a command with too few numbers."""
        with self.assertLogs("svg_paths", level="WARNING"):
            path = to_absolute("M0 0 L 5 L 1 1")
        self.assertEqual(path, [MoveTo((0.0, 0.0)), LineTo((1.0, 1.0))])

    def test_numbers_without_command(self):
        """Test numbers before the first command."""
        with self.assertLogs("svg_paths", level="WARNING"):
            path = to_absolute("1 2 M 3 4")
        self.assertEqual(path, [MoveTo((3.0, 4.0))])

    def test_empty_path(self):
        """Test an empty path."""
        self.assertEqual(to_absolute(""), [])

    def test_serialize_format(self):
        """Test path serialization."""
        path = [MoveTo((0.0, 0.0)), LineTo((1.5, 2.0)), ArcTo(3.0, 3.0, 0.0, True, False, (4.0, 0.0)), Close()]
        self.assertEqual(serialize(path), "M 0 0 L 1.5 2 A 3 3 0 1 0 4 0 Z")


class TestPathTransforms(unittest.TestCase):
    """Applying matrices to parsed paths."""

    def test_transform_path_moves_every_point(self):
        """Test transforming a path."""
        path = to_absolute("M0 0 C 1 0 1 1 0 1")
        moved = transform_path(path, parse_transform("translate(10, 20)"))
        self.assertEqual(moved, [MoveTo((10.0, 20.0)), CubicTo((11.0, 20.0), (11.0, 21.0), (10.0, 21.0))])

    def test_arc_keeps_radii(self):
        """Test transforming an arc under translation."""
        path = to_absolute("M0 0 A 5 5 0 0 1 10 0")
        moved = transform_path(path, parse_transform("scale(2)"))
        self.assertEqual(moved[1], ArcTo(5.0, 5.0, 0.0, False, True, (20.0, 0.0)))

    def test_path_vertices_skip_close(self):
        """Test vertex listing."""
        self.assertEqual(path_vertices(to_absolute("M0 0 L 1 0 L 1 1 Z")), [(0.0, 0.0), (1.0, 0.0), (1.0, 1.0)])

    def test_points_to_path(self):
        """Test converting a points list to path data."""
        self.assertEqual(points_to_path("0,0 1,0 1,1", closed=True), [
            MoveTo((0.0, 0.0)), LineTo((1.0, 0.0)), LineTo((1.0, 1.0)), Close(),
        ])
        self.assertEqual(points_to_path("0,0 1,0", closed=False)[-1], LineTo((1.0, 0.0)))
        self.assertEqual(points_to_path("", closed=True), [])

    def test_odd_points_drop_last_value(self):
        """Test a points list with an odd count."""
        with self.assertLogs("svg_paths", level="WARNING"):
            self.assertEqual(parse_points("1 2 3"), [(1.0, 2.0)])


class TestDensify(unittest.TestCase):
    """densify_path."""

    def test_straight_line_stays_collinear(self):
        """Test densifying a straight line."""
        path = [MoveTo((0.0, 0.0)), LineTo((9.0, 12.0))]
        dense = densify_path(path, 2.0)
        self.assertEqual(len(dense), 1 + 8)
        for x, y in path_vertices(dense):
            self.assertAlmostEqual(4 * x - 3 * y, 0.0, places=9)
        self.assertEqual(dense[-1], LineTo((9.0, 12.0)))

    def test_point_count_grows_as_segments_shrink(self):
        """Test that smaller segments give more points."""
        path = [MoveTo((0.0, 0.0)), LineTo((10.0, 0.0))]
        counts = [len(densify_path(path, m)) for m in (5.0, 2.0, 1.0, 0.5)]
        self.assertEqual(counts, sorted(counts))
        self.assertEqual(counts, [3, 6, 11, 21])

    def test_segments_respect_max_length(self):
        """Test the segment length limit."""
        path = to_absolute("M0 0 L 10 3 L -4 8")
        vertices = path_vertices(densify_path(path, 1.5))
        for a, b in zip(vertices, vertices[1:]):
            self.assertLessEqual(math.dist(a, b), 1.5 + 1e-9)

    def test_short_curves_get_minimum_steps(self):
        """Test the minimum step counts."""
        cubic = densify_path(to_absolute("M0 0 C 0.1 0.1 0.2 0.1 0.3 0"), 2.0)
        quad = densify_path(to_absolute("M0 0 Q 0.1 0.1 0.2 0"), 2.0)
        arc = densify_path(to_absolute("M0 0 A 1 1 0 0 1 0.5 0"), 2.0)
        self.assertEqual(len(cubic), 1 + 4)
        self.assertEqual(len(quad), 1 + 4)
        self.assertEqual(len(arc), 1 + 8)

    def test_cubic_samples_lie_on_curve(self):
        """Test cubic samples against the Bernstein form."""
        dense = densify_path(to_absolute("M0 0 C 0 10 10 10 10 0"), 1.0)
        vertices = path_vertices(dense)
        # Symmetric curve: its midpoint is (5, 7.5).
        self.assertIn((5.0, 7.5), [(round(x, 9), round(y, 9)) for x, y in vertices])
        self.assertEqual(vertices[-1], (10.0, 0.0))

    def test_close_adds_closing_segments(self):
        """Test densifying the closing segment."""
        dense = densify_path(to_absolute("M0 0 L 4 0 L 4 4 Z"), 2.0)
        self.assertIsInstance(dense[-1], Close)
        self.assertEqual(dense[-2], LineTo((0.0, 0.0)))
        self.assertEqual(sum(isinstance(c, LineTo) for c in dense), 2 + 2 + 3)

    def test_close_at_start_adds_nothing(self):
        """Test Z when already at the start."""
        dense = densify_path(to_absolute("M0 0 L 1 0 L 0 0 Z"), 2.0)
        self.assertEqual(dense, [MoveTo((0.0, 0.0)), LineTo((1.0, 0.0)), LineTo((0.0, 0.0)), Close()])

    def test_non_positive_length_raises(self):
        """Test invalid segment lengths."""
        with self.assertRaises(ValueError):
            densify_path([MoveTo((0.0, 0.0))], 0)
        with self.assertRaises(ValueError):
            densify_path([MoveTo((0.0, 0.0))], -1.0)


def run_tests():
    """Run all tests."""
    loader = unittest.TestLoader()
    suite = unittest.TestSuite()

    suite.addTests(loader.loadTestsFromTestCase(TestAffineAlgebra))
    suite.addTests(loader.loadTestsFromTestCase(TestParseTransform))
    suite.addTests(loader.loadTestsFromTestCase(TestFormatNumber))
    suite.addTests(loader.loadTestsFromTestCase(TestPathParsing))
    suite.addTests(loader.loadTestsFromTestCase(TestPathTransforms))
    suite.addTests(loader.loadTestsFromTestCase(TestDensify))

    runner = unittest.TextTestRunner(verbosity=2)
    result = runner.run(suite)

    return result.wasSuccessful()


if __name__ == "__main__":
    success = run_tests()
    sys.exit(0 if success else 1)
