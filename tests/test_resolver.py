import os
from pathlib import Path

import pytest

from jailfs.errors import ErrorCode, VFSError
from jailfs.resolver import JailResolver, split_virtual


def _make_chain(base: Path, length: int) -> None:
    """Create l0 -> l1 -> ... -> l{length-1} -> target.txt."""

    (base / "target.txt").write_text("end of chain")
    for idx in range(length):
        target = f"l{idx + 1}" if idx + 1 < length else "target.txt"
        (base / f"l{idx}").symlink_to(target)


def test_empty_path_is_base(resolver: JailResolver, base: Path) -> None:
    assert resolver.resolve_sync([]) == str(base)
    assert resolver.resolve_sync("/") == str(base)
    assert resolver.resolve_sync(".") == str(base)


def test_plain_segments_resolve_below_base(resolver: JailResolver, base: Path) -> None:
    (base / "dir").mkdir()
    (base / "dir" / "file.txt").write_text("hi")

    assert resolver.resolve_sync(["dir", "file.txt"]) == str(base / "dir" / "file.txt")
    assert resolver.resolve_sync("/dir/./file.txt") == str(base / "dir" / "file.txt")


def test_relative_link_escaping_after_normalization_is_rejected(resolver: JailResolver, base: Path) -> None:
    (base / "a").symlink_to("../../etc")

    with pytest.raises(VFSError) as excinfo:
        resolver.resolve_sync(["a", "b"])

    assert excinfo.value.code is ErrorCode.EINVAL


def test_relative_link_resolves_against_containing_directory(resolver: JailResolver, base: Path) -> None:
    (base / "sub").mkdir()
    (base / "link").symlink_to("sub")

    assert resolver.resolve_sync(["link", "file.txt"]) == str(base / "sub" / "file.txt")


def test_nested_relative_link_uses_its_own_directory(resolver: JailResolver, base: Path) -> None:
    (base / "a" / "b").mkdir(parents=True)
    (base / "a" / "c").mkdir()
    (base / "a" / "b" / "hop").symlink_to("../c")

    assert resolver.resolve_sync("a/b/hop") == str(base / "a" / "c")


def test_caller_dotdot_within_base_is_allowed(resolver: JailResolver, base: Path) -> None:
    (base / "sub").mkdir()

    assert resolver.resolve_sync(["sub", "..", "file"]) == str(base / "file")


def test_caller_dotdot_above_base_is_rejected(resolver: JailResolver, outside: Path) -> None:
    with pytest.raises(VFSError) as excinfo:
        resolver.resolve_sync(["..", outside.name, "secret.txt"])

    assert excinfo.value.code is ErrorCode.EINVAL


def test_absolute_link_inside_base_is_followed(resolver: JailResolver, base: Path) -> None:
    (base / "real").mkdir()
    (base / "real" / "file.txt").write_text("data")
    (base / "abs").symlink_to(base / "real")

    assert resolver.resolve_sync(["abs", "file.txt"]) == str(base / "real" / "file.txt")


def test_absolute_link_outside_base_is_rejected(resolver: JailResolver, base: Path, outside: Path) -> None:
    (base / "escape").symlink_to(outside)

    with pytest.raises(VFSError) as excinfo:
        resolver.resolve_sync(["escape", "secret.txt"])

    assert excinfo.value.code is ErrorCode.EINVAL


def test_absolute_link_may_range_outside_before_landing_inside(resolver: JailResolver, base: Path) -> None:
    (base / "real").mkdir()
    detour = f"{base}{os.sep}..{os.sep}{base.name}{os.sep}real"
    (base / "detour").symlink_to(detour)

    assert resolver.resolve_sync(["detour", "file.txt"]) == str(base / "real" / "file.txt")


def test_relative_link_after_absolute_restores_step_checks(resolver: JailResolver, base: Path) -> None:
    (base / "inner").mkdir()
    (base / "file").write_text("x")
    (base / "jump").symlink_to(base / "inner")
    # Would land back on base/file, but walks above base on the way.
    (base / "inner" / "up").symlink_to(f"..{os.sep}..{os.sep}{base.name}{os.sep}file")

    with pytest.raises(VFSError) as excinfo:
        resolver.resolve_sync(["jump", "up"])

    assert excinfo.value.code is ErrorCode.EINVAL


def test_chain_of_forty_links_resolves(resolver: JailResolver, base: Path) -> None:
    _make_chain(base, 40)

    assert resolver.resolve_sync(["l0"]) == str(base / "target.txt")


def test_chain_longer_than_forty_links_fails(resolver: JailResolver, base: Path) -> None:
    _make_chain(base, 41)

    with pytest.raises(VFSError) as excinfo:
        resolver.resolve_sync(["l0"])

    assert excinfo.value.code is ErrorCode.EINVAL
    assert "too many symlinks" in excinfo.value.message


@pytest.mark.parametrize("shape", ["self", "pair"])
def test_link_cycles_fail_invalid_argument(resolver: JailResolver, base: Path, shape: str) -> None:
    if shape == "self":
        (base / "loop").symlink_to("loop")
    else:
        (base / "loop").symlink_to("other")
        (base / "other").symlink_to("loop")

    with pytest.raises(VFSError) as excinfo:
        resolver.resolve_sync(["loop", "anything"])

    assert excinfo.value.code is ErrorCode.EINVAL


def test_hop_limit_is_configurable(base: Path) -> None:
    _make_chain(base, 3)
    resolver = JailResolver(base, max_hops=2)

    with pytest.raises(VFSError):
        resolver.resolve_sync(["l0"])


def test_hop_counter_is_per_resolution(resolver: JailResolver, base: Path) -> None:
    _make_chain(base, 30)

    for _ in range(3):
        assert resolver.resolve_sync(["l0"]) == str(base / "target.txt")


def test_missing_final_segment_is_tolerated(resolver: JailResolver, base: Path) -> None:
    assert resolver.resolve_sync(["new.txt"]) == str(base / "new.txt")


def test_missing_intermediate_segment_fails_not_found(resolver: JailResolver) -> None:
    with pytest.raises(VFSError) as excinfo:
        resolver.resolve_sync(["missing", "file.txt"])

    assert excinfo.value.code is ErrorCode.ENOENT


def test_file_used_as_directory_fails_not_a_directory(resolver: JailResolver, base: Path) -> None:
    (base / "file.txt").write_text("x")

    with pytest.raises(VFSError) as excinfo:
        resolver.resolve_sync(["file.txt", "child"])

    assert excinfo.value.code is ErrorCode.ENOTDIR


def test_dangling_link_resolves_to_missing_target(resolver: JailResolver, base: Path) -> None:
    (base / "dangling").symlink_to("not-yet")

    assert resolver.resolve_sync(["dangling"]) == str(base / "not-yet")


def test_final_link_kept_when_not_following(resolver: JailResolver, base: Path, outside: Path) -> None:
    (base / "escape").symlink_to(outside)

    assert resolver.resolve_sync(["escape"], follow_last=False) == str(base / "escape")


def test_only_the_final_link_is_kept_unresolved(resolver: JailResolver, base: Path) -> None:
    (base / "dir").mkdir()
    (base / "dir" / "inner").symlink_to("elsewhere")
    (base / "alias").symlink_to("dir")

    assert resolver.resolve_sync(["alias", "inner"], follow_last=False) == str(base / "dir" / "inner")


def test_contains_is_separator_bounded(resolver: JailResolver, base: Path) -> None:
    assert resolver.contains(str(base)) is True
    assert resolver.contains(str(base / "child")) is True
    assert resolver.contains(str(base) + "2") is False
    assert resolver.contains(str(base.parent)) is False


def test_to_virtual_renders_absolute_and_relative(resolver: JailResolver, base: Path) -> None:
    real = str(base / "sub" / "a.txt")

    assert resolver.to_virtual(real, True) == "/sub/a.txt"
    assert resolver.to_virtual(real, False) == "sub/a.txt"
    assert resolver.to_virtual(str(base), True) == "/"
    assert resolver.to_virtual(str(base), False) == "."


def test_missing_base_directory_fails(tmp_path: Path) -> None:
    with pytest.raises(VFSError) as excinfo:
        JailResolver(tmp_path / "nope")

    assert excinfo.value.code is ErrorCode.ENOENT


def test_base_directory_is_canonicalized(tmp_path: Path, base: Path) -> None:
    alias = tmp_path / "alias"
    alias.symlink_to(base)

    assert JailResolver(alias).base == str(base)


def test_split_virtual() -> None:
    assert split_virtual("/a/./b/") == ["a", "b"]
    assert split_virtual("a/../b") == ["a", "..", "b"]
    assert split_virtual(["a/b", "c"]) == ["a", "b", "c"]
    assert split_virtual("") == []


@pytest.mark.asyncio
async def test_async_resolve(resolver: JailResolver, base: Path) -> None:
    (base / "link").symlink_to(".")

    assert await resolver.resolve("link/link/x") == str(base / "x")
