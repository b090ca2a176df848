import os
import shutil
import tempfile
from pathlib import Path
from typing import List, Literal, Optional


def is_safe_path(value: str) -> bool:
    """False for paths that climb out of the vault through a ``..`` segment."""
    return ".." not in Path(value).as_posix().split("/")


def safe_rel_path(value: str) -> str:
    if not is_safe_path(value):
        raise ValueError(f"unsafe_path: {value}")
    rel = Path(value).as_posix().lstrip("/")
    return "" if rel == "." else rel


def path_depth(path: str) -> int:
    return len(safe_rel_path(path).split("/"))


def parent_path(path: str) -> str:
    rel = safe_rel_path(path)
    return rel.rsplit("/", 1)[0] if "/" in rel else ""


def base_name(path: str) -> str:
    return safe_rel_path(path).rsplit("/", 1)[-1]


def is_within(path: str, folder: str) -> bool:
    rel = safe_rel_path(path)
    root = safe_rel_path(folder)
    return rel == root or rel.startswith(f"{root}/")


class LocalVault:
    """The local tree, addressed by vault-relative posix paths."""

    def __init__(self, root: str, config_dir: str = "", exclude_dirs: Optional[List[str]] = None):
        self.root = Path(root).expanduser()
        self.config_dir = safe_rel_path(config_dir) if config_dir else ""
        self.exclude_dirs = set(exclude_dirs or [])

    def full_path(self, path: str) -> Path:
        return self.root / safe_rel_path(path)

    def exists(self, path: str) -> bool:
        return self.full_path(path).exists()

    def is_file(self, path: str) -> bool:
        return self.full_path(path).is_file()

    def is_folder(self, path: str) -> bool:
        rel = safe_rel_path(path)
        return bool(rel) and self.full_path(rel).is_dir()

    def in_config_dir(self, path: str) -> bool:
        return bool(self.config_dir) and is_within(path, self.config_dir)

    def list(self, kind: Literal["file", "folder"], under: str = "") -> List[str]:
        """Relative paths of every file or folder strictly below ``under``.

        Excluded directory names are skipped. The config directory is only
        listed when ``under`` points into it.
        """
        base = self.full_path(under)
        if not base.is_dir():
            return []

        include_config = self.in_config_dir(under)
        out: List[str] = []
        for root, dirnames, filenames in os.walk(base):
            root_path = Path(root)
            kept = []
            for d in dirnames:
                if d in self.exclude_dirs:
                    continue
                rel_dir = safe_rel_path(str((root_path / d).relative_to(self.root)))
                if not include_config and self.in_config_dir(rel_dir):
                    continue
                kept.append(d)
                if kind == "folder":
                    out.append(rel_dir)
            dirnames[:] = kept

            if kind == "file":
                for name in filenames:
                    full = root_path / name
                    if full.is_file():
                        out.append(safe_rel_path(str(full.relative_to(self.root))))

        out.sort()
        return out

    def read_binary(self, path: str) -> bytes:
        return self.full_path(path).read_bytes()

    def mkdir(self, path: str) -> None:
        self.full_path(path).mkdir(parents=True, exist_ok=True)

    def write_binary(self, path: str, data: bytes) -> None:
        target = self.full_path(path)
        target.parent.mkdir(parents=True, exist_ok=True)

        with tempfile.NamedTemporaryFile(delete=False, dir=str(target.parent)) as tmp:
            tmp.write(data)
            tmp_path = Path(tmp.name)

        try:
            shutil.move(str(tmp_path), str(target))
        finally:
            if tmp_path.exists():
                tmp_path.unlink(missing_ok=True)
