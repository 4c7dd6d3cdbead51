"""End-to-end tests for :func:`chunkapply.chunkermatapply`."""

from __future__ import annotations

import unittest
import warnings
from dataclasses import replace

import numpy as np
import scipy.sparse as sps

from chunkapply import (
    AccelerationUnavailableWarning,
    ApplyOptions,
    ChunkGraph,
    DirectSmoothEvaluator,
    InputTypeError,
    Kernel,
    MergedSmoothStrategy,
    NativeCorrectionBuilder,
    PairwiseSmoothStrategy,
    ShapeMismatchError,
    as_kernel_descriptor,
    chunkermatapply,
    constant_kernel,
    laplace2d_kernel,
    select_strategy,
    tensor_kernel,
    zero_kernel,
)

from chunk_fixtures import (
    CountingBuilder,
    FailingEvaluator,
    SummingEvaluator,
    circle_chunker,
    identity_like_kernel,
    segment_chunker,
)


def _quiet_apply(*args, **kwargs):
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", AccelerationUnavailableWarning)
        return chunkermatapply(*args, **kwargs)


class ScenarioTests(unittest.TestCase):
    """Small systems with known answers, using an unweighted smooth evaluator."""

    def test_merged_constant_kernel_sums_every_source(self) -> None:
        """Two 4-point chunkers, constant ``c`` and ones give ``8 c`` everywhere."""

        c = 2.5
        chnkrs = [segment_chunker(0.0), segment_chunker(2.0)]
        evaluator = SummingEvaluator()

        u = _quiet_apply(
            chnkrs,
            constant_kernel(c),
            np.ones(8),
            sps.csr_matrix((8, 8)),
            smooth_evaluator=evaluator,
        )

        np.testing.assert_allclose(u, np.full(8, 8.0 * c))
        self.assertEqual(len(evaluator.calls), 1)
        self.assertEqual(evaluator.calls[0][1], 8)

    def test_block_identity_returns_density(self) -> None:
        """Identity-like diagonal kernels with zero couplings reproduce the density."""

        chnkrs = [segment_chunker(0.0), segment_chunker(2.0)]
        kern = [
            [identity_like_kernel(), zero_kernel()],
            [zero_kernel(), identity_like_kernel()],
        ]
        dens = np.arange(1.0, 9.0)

        u = _quiet_apply(
            chnkrs, kern, dens, sps.csr_matrix((8, 8)), smooth_evaluator=SummingEvaluator()
        )

        np.testing.assert_array_equal(u[:4], dens[:4])
        np.testing.assert_array_equal(u[4:], dens[4:])

    def test_pairwise_accumulates_in_index_order(self) -> None:
        """Per-pair evaluations run target-major, then by source index."""

        chnkrs = [segment_chunker(0.0), segment_chunker(2.0, nch=3)]
        kern = [[constant_kernel(1.0)] * 2] * 2
        evaluator = SummingEvaluator()

        _quiet_apply(
            chnkrs, kern, np.ones(10), sps.csr_matrix((10, 10)), smooth_evaluator=evaluator
        )

        order = [(chnkrs.index(src), ntarg) for src, ntarg in evaluator.calls]
        self.assertEqual(order, [(0, 4), (1, 4), (0, 6), (1, 6)])

    def test_zero_correction_equals_smooth_output(self) -> None:
        """With zero corrections the result is exactly the smooth evaluation."""

        chnkr = circle_chunker(nch=4, k=8)
        kernel = constant_kernel(0.75)
        dens = np.cos(np.arange(chnkr.npt))
        options = ApplyOptions()

        u = _quiet_apply(chnkr, kernel, dens, sps.csr_matrix((chnkr.npt, chnkr.npt)), options)
        smooth = DirectSmoothEvaluator().evaluate(
            chnkr, kernel, (1, 1), dens, chnkr.point_info(), None, options
        )

        np.testing.assert_array_equal(u, smooth)


class LaplaceCircleTests(unittest.TestCase):
    """Gauss-law identities on circles with the default evaluator and builder."""

    def test_double_layer_of_ones_is_one_half(self) -> None:
        """``D[1] = 1/2`` on the boundary of a circle."""

        chnkr = circle_chunker(radius=1.3, nch=8, k=16)
        u = _quiet_apply(chnkr, laplace2d_kernel("d"), np.ones(chnkr.npt))
        np.testing.assert_allclose(u, 0.5, rtol=0.0, atol=1.0e-12)

    def test_normal_derivative_of_single_layer_is_minus_one_half(self) -> None:
        """``S'[1] = -1/2`` on the boundary of a circle."""

        chnkr = circle_chunker(radius=0.7, nch=8, k=16)
        u = _quiet_apply(chnkr, laplace2d_kernel("sp"), np.ones(chnkr.npt))
        np.testing.assert_allclose(u, -0.5, rtol=0.0, atol=1.0e-12)

    def test_single_and_matrix_kernels_agree_on_two_circles(self) -> None:
        """Merged and pairwise strategies produce the same operator."""

        chnkrs = [circle_chunker(nch=10, k=16), circle_chunker(radius=0.5, center=(4.0, 0.5), nch=10, k=16)]
        npt = sum(c.npt for c in chnkrs)
        dens = np.ones(npt)
        d = laplace2d_kernel("d")

        merged = _quiet_apply(chnkrs, d, dens)
        pairwise = _quiet_apply(chnkrs, [[d, d], [d, d]], dens)

        np.testing.assert_allclose(merged, pairwise, rtol=1.0e-12, atol=1.0e-13)
        # exterior Gauss law: the other circle contributes nothing
        np.testing.assert_allclose(merged, 0.5, atol=1.0e-10)

    def test_chunkgraph_edges_are_components(self) -> None:
        """A chunk graph behaves like the list of its edge chunkers."""

        chnkrs = (circle_chunker(nch=6, k=12), circle_chunker(center=(3.0, 0.0), nch=6, k=12))
        graph = ChunkGraph(chnkrs)
        dens = np.linspace(0.0, 1.0, sum(c.npt for c in chnkrs))

        u_graph = _quiet_apply(graph, laplace2d_kernel("d"), dens)
        u_list = _quiet_apply(list(chnkrs), laplace2d_kernel("d"), dens)

        np.testing.assert_allclose(u_graph, u_list, rtol=1.0e-14, atol=1.0e-14)

    def test_bare_callable_with_default_options(self) -> None:
        """A plain ``f(src, targ)`` kernel needs no options or correction matrix."""

        chnkr = circle_chunker(nch=4, k=8)
        u = _quiet_apply(chnkr, lambda s, t: np.ones((t.npt, s.npt)), np.ones(chnkr.npt))

        np.testing.assert_allclose(u, np.sum(chnkr.weights), rtol=1.0e-13)

    def test_vector_valued_kernel(self) -> None:
        """A tensored double layer scales each density component by its block."""

        chnkr = circle_chunker(nch=8, k=16)
        kern = tensor_kernel(laplace2d_kernel("d"), np.diag([1.0, 2.0]))
        dens = np.tile([3.0, -1.0], chnkr.npt)

        u = _quiet_apply(chnkr, kern, dens)

        self.assertEqual(u.shape, (2 * chnkr.npt,))
        np.testing.assert_allclose(u[0::2], 1.5, atol=1.0e-12)
        np.testing.assert_allclose(u[1::2], -1.0, atol=1.0e-12)


class PropertyTests(unittest.TestCase):
    """Isolation, correction consistency and scaling."""

    def setUp(self) -> None:
        self.chnkrs = [circle_chunker(nch=6, k=12), circle_chunker(radius=0.6, center=(3.0, 1.0), nch=5, k=12)]
        self.n0 = self.chnkrs[0].npt
        self.npt = sum(c.npt for c in self.chnkrs)
        rng = np.random.default_rng(7)
        self.dens = rng.standard_normal(self.npt)

    def test_zero_coupling_isolates_first_block(self) -> None:
        """With ``K(1, 2) = 0`` the first output block ignores the second density."""

        kern = [
            [laplace2d_kernel("d"), zero_kernel()],
            [constant_kernel(0.3), constant_kernel(1.0)],
        ]
        zeroed = self.dens.copy()
        zeroed[self.n0:] = 0.0

        u = _quiet_apply(self.chnkrs, kern, self.dens)
        u_zeroed = _quiet_apply(self.chnkrs, kern, zeroed)

        np.testing.assert_array_equal(u[: self.n0], u_zeroed[: self.n0])
        self.assertFalse(np.allclose(u[self.n0:], u_zeroed[self.n0:]))

    def test_explicit_correction_matches_built_correction(self) -> None:
        """Passing a prebuilt correction matrix gives the same result as building it."""

        kern = laplace2d_kernel("d")
        options = ApplyOptions()
        cormat = NativeCorrectionBuilder().build(
            self.chnkrs, as_kernel_descriptor(kern), replace(options, corrections=True)
        )

        u_explicit = _quiet_apply(self.chnkrs, kern, self.dens, cormat, options)
        u_built = _quiet_apply(self.chnkrs, kern, self.dens, None, options)

        np.testing.assert_allclose(u_explicit, u_built, rtol=1.0e-10, atol=1.0e-14)

    def test_builder_receives_corrections_only_options(self) -> None:
        """The on-demand builder is asked for corrections only."""

        builder = CountingBuilder(NativeCorrectionBuilder())
        _quiet_apply(self.chnkrs, laplace2d_kernel("d"), self.dens, correction_builder=builder)

        self.assertEqual(builder.calls, 1)
        self.assertTrue(builder.last_options.corrections)

    def test_l2scale_conjugates_the_operator(self) -> None:
        """``l2scale`` applies ``S A S^-1`` with ``S = diag(sqrt(w))``."""

        kern = laplace2d_kernel("d")
        sqrt_w = np.sqrt(np.concatenate([c.weights for c in self.chnkrs]))

        plain = _quiet_apply(self.chnkrs, kern, self.dens / sqrt_w)
        scaled = _quiet_apply(self.chnkrs, kern, self.dens, options={"l2scale": True})

        np.testing.assert_allclose(scaled, sqrt_w * plain, rtol=1.0e-12, atol=1.0e-13)

    def test_strategy_selection(self) -> None:
        """Single kernels merge; kernel matrices and mixed panel orders loop over pairs."""

        single = as_kernel_descriptor(zero_kernel())
        matrix = as_kernel_descriptor([[zero_kernel()] * 2] * 2)
        mixed = [circle_chunker(nch=2, k=4), circle_chunker(nch=2, k=6)]

        self.assertIsInstance(select_strategy(single, self.chnkrs), MergedSmoothStrategy)
        self.assertIsInstance(select_strategy(matrix, self.chnkrs), PairwiseSmoothStrategy)
        self.assertIsInstance(select_strategy(single, mixed), PairwiseSmoothStrategy)


class ErrorHandlingTests(unittest.TestCase):
    """Fatal errors, advisories and propagation of downstream failures."""

    def setUp(self) -> None:
        self.chnkr = circle_chunker(nch=2, k=4)
        self.dens = np.ones(self.chnkr.npt)

    def test_bad_geometry(self) -> None:
        """Unrecognised geometry raises :class:`InputTypeError`."""

        with self.assertRaises(InputTypeError):
            chunkermatapply("circle", zero_kernel(), self.dens)
        with self.assertRaises(InputTypeError):
            chunkermatapply([self.chnkr, 3], zero_kernel(), np.ones(9))

    def test_bad_kernel(self) -> None:
        """Kernels that are neither objects, callables nor matrices are rejected."""

        with self.assertRaises(InputTypeError):
            chunkermatapply(self.chnkr, 3.0, self.dens)
        with self.assertRaises(InputTypeError):
            chunkermatapply(self.chnkr, [[zero_kernel(), "x"], [zero_kernel(), zero_kernel()]], self.dens)

    def test_density_length_mismatch_builds_nothing(self) -> None:
        """A wrong density length fails before any correction is built."""

        builder = CountingBuilder(NativeCorrectionBuilder())
        with self.assertRaises(ShapeMismatchError) as ctx:
            chunkermatapply(self.chnkr, zero_kernel(), np.ones(5), correction_builder=builder)

        self.assertIn("5", str(ctx.exception))
        self.assertIn(str(self.chnkr.npt), str(ctx.exception))
        self.assertEqual(builder.calls, 0)

    def test_correction_shape_mismatch(self) -> None:
        """A correction matrix of the wrong shape is rejected."""

        with self.assertRaises(ShapeMismatchError):
            chunkermatapply(self.chnkr, zero_kernel(), self.dens, sps.csr_matrix((3, 3)))

    def test_inconsistent_kernel_matrix_dimensions(self) -> None:
        """Kernel pairs disagreeing on a chunker's width raise a shape error."""

        chnkrs = [segment_chunker(0.0), segment_chunker(2.0)]
        kern = [
            [zero_kernel(), zero_kernel((1, 2))],
            [zero_kernel(), zero_kernel()],
        ]
        with self.assertRaises(ShapeMismatchError):
            chunkermatapply(chnkrs, kern, np.ones(8))

    def test_declared_dimensions_disagreeing_with_blocks(self) -> None:
        """A kernel whose blocks do not match its declared ``opdims`` fails before applying."""

        kern = Kernel(lambda s, t: np.ones((t.npt, s.npt)), opdims=(2, 2))
        with self.assertRaises(ShapeMismatchError):
            _quiet_apply(self.chnkr, kern, np.ones(2 * self.chnkr.npt))

    def test_advisory_does_not_change_result(self) -> None:
        """Missing FMMs warn but the apply completes."""

        with self.assertWarns(AccelerationUnavailableWarning):
            u = chunkermatapply(self.chnkr, constant_kernel(1.0), self.dens)
        np.testing.assert_allclose(u, np.sum(self.chnkr.weights))

    def test_smooth_evaluator_failure_propagates(self) -> None:
        """Errors raised by the smooth evaluator reach the caller unchanged."""

        error = FloatingPointError("degenerate geometry")
        with self.assertRaises(FloatingPointError) as ctx:
            chunkermatapply(
                self.chnkr,
                zero_kernel(),
                self.dens,
                smooth_evaluator=FailingEvaluator(error),
            )
        self.assertIs(ctx.exception, error)

    def test_builder_failure_propagates(self) -> None:
        """Errors from the correction builder are not suppressed."""

        class Broken:
            def build(self, geometry, kernels, options):
                raise RuntimeError("no quadrature")

        with self.assertRaises(RuntimeError):
            chunkermatapply(self.chnkr, zero_kernel(), self.dens, correction_builder=Broken())


if __name__ == "__main__":
    unittest.main()
