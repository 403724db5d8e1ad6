"""End-to-end tests against the native libraries numpy actually loads.

threadpoolctl inspects the same process independently, so its view is used
as the reference for what was detected and what a scope changed.
"""

import pytest

np = pytest.importorskip("numpy")
threadpoolctl = pytest.importorskip("threadpoolctl")

from threadbudget.context import CoordinationContext  # noqa: E402
from threadbudget.types import ApiKind  # noqa: E402


@pytest.fixture
def live_context():
    context = CoordinationContext()
    context.refresh()
    return context


def _blas_info():
    return [
        info
        for info in threadpoolctl.threadpool_info()
        if info.get("user_api") == "blas"
    ]


class TestLiveProcess:
    """Tests against the running interpreter."""

    def test_blas_detected_like_threadpoolctl(self, live_context) -> None:
        expected = {info["filepath"] for info in _blas_info()}
        if not expected:
            pytest.skip("numpy is not linked against a threaded BLAS")

        detected = {
            info.path for info in live_context.list_runtimes().select(api_kind=ApiKind.LINEAR_ALGEBRA)
        }

        assert expected <= detected

    def test_scope_visible_to_threadpoolctl(self, live_context) -> None:
        before = {info["filepath"]: info["num_threads"] for info in _blas_info()}
        if not before:
            pytest.skip("numpy is not linked against a threaded BLAS")

        with live_context.thread_budget(1):
            inside = {info["filepath"]: info["num_threads"] for info in _blas_info()}
            np.dot(np.ones((64, 64)), np.ones((64, 64)))

        after = {info["filepath"]: info["num_threads"] for info in _blas_info()}
        assert set(inside.values()) == {1}
        assert after == before

    def test_repeated_refresh_is_stable(self, live_context) -> None:
        first = live_context.list_runtimes()
        second = live_context.refresh()

        assert [i.identity for i in first] == [i.identity for i in second]
        assert second.generation == first.generation + 1
