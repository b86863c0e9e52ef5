"""Volume ownership and permission repair."""
import logging
import os
import stat
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ..classification.categories import ClassifiedError
from ..types import ActionType, CommandRunner
from .base import ActionContext, BaseAction, stop_and_remove

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VolumePermission:
    """Expected ownership and mode of a service volume under the project root."""
    path: str
    uid: int
    gid: int
    mode: str
    recursive: bool = True


STANDARD_PERMISSIONS: dict[str, VolumePermission] = {
    "redis-data": VolumePermission("redis-data", 999, 999, "0755"),
    "postgres-data": VolumePermission("postgres-data", 999, 999, "0700"),
    "uploads": VolumePermission("uploads", 1000, 1000, "0755"),
    "kali-data": VolumePermission("uploads/kasm_profiles", 0, 0, "0755"),
}

POSTGRES_LOCK_FILES = (
    "postmaster.pid",
    "recovery.signal",
    "standby.signal",
    "postgresql.auto.conf.tmp",
)

REDIS_TEMP_MARKERS = ("temp-rewriteaof", ".tmp", ".temp")


@dataclass
class VolumeValidationResult:
    path: str
    exists: bool = False
    readable: bool = False
    writable: bool = False
    owner: tuple[int, int] = (-1, -1)
    permissions: str = ""
    issues: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "exists": self.exists,
            "readable": self.readable,
            "writable": self.writable,
            "owner": {"uid": self.owner[0], "gid": self.owner[1]},
            "permissions": self.permissions,
            "issues": list(self.issues),
        }


class VolumePermissionManager:
    """Validates and repairs ownership of the service data volumes.

    Ownership changes go through the command runner so that the privileged
    fallback applies; file discovery and removal use the filesystem directly
    and fall back to the runner when the process lacks permission.
    """

    def __init__(self, ctx: ActionContext):
        self.ctx = ctx
        self.runner: CommandRunner = ctx.runner
        self.root = Path(ctx.config.project_root)

    def resolve(self, name: str) -> Path:
        return self.root / STANDARD_PERMISSIONS[name].path

    async def set_ownership(self, path: Path, uid: int, gid: int, recursive: bool = True) -> bool:
        flag = "-R " if recursive else ""
        result = await self.runner.run(f'chown {flag}{uid}:{gid} "{path}"')
        return result.ok

    async def set_permissions(self, path: Path, mode: str, recursive: bool = True) -> bool:
        flag = "-R " if recursive else ""
        result = await self.runner.run(f'chmod {flag}{mode} "{path}"')
        return result.ok

    async def ensure_directory(self, path: Path) -> bool:
        try:
            path.mkdir(parents=True, exist_ok=True)
            return True
        except PermissionError:
            result = await self.runner.run(f'mkdir -p "{path}"')
            return result.ok

    async def remove_file(self, path: Path) -> bool:
        try:
            path.unlink(missing_ok=True)
            return True
        except PermissionError:
            result = await self.runner.run(f'rm -f "{path}"')
            return result.ok

    def validate_volume(self, path: Path) -> VolumeValidationResult:
        result = VolumeValidationResult(path=str(path))
        try:
            st = path.stat()
        except FileNotFoundError:
            result.issues.append("Path does not exist")
            return result
        except PermissionError:
            result.exists = True
            result.issues.append("Cannot stat path")
            return result

        result.exists = True
        result.owner = (st.st_uid, st.st_gid)
        result.permissions = oct(stat.S_IMODE(st.st_mode))[2:].zfill(4)
        result.readable = os.access(path, os.R_OK)
        result.writable = os.access(path, os.W_OK)
        if not result.readable:
            result.issues.append("Path is not readable")
        if not result.writable:
            result.issues.append("Path is not writable")
        return result

    async def apply_standard(self, name: str) -> bool:
        spec = STANDARD_PERMISSIONS[name]
        path = self.resolve(name)
        if not await self.ensure_directory(path):
            return False
        owned = await self.set_ownership(path, spec.uid, spec.gid, spec.recursive)
        moded = await self.set_permissions(path, spec.mode, spec.recursive)
        return owned and moded

    def redis_temp_files(self) -> list[Path]:
        data = self.resolve("redis-data")
        found = []
        for directory in (data, data / "appendonlydir"):
            if not directory.is_dir():
                continue
            for entry in directory.iterdir():
                if entry.is_file() and any(marker in entry.name for marker in REDIS_TEMP_MARKERS):
                    found.append(entry)
        return found

    async def fix_redis_permissions(self) -> bool:
        """Recreate the redis data layout with ownership the container user can write."""
        data = self.resolve("redis-data")
        if not await self.ensure_directory(data):
            return False

        await stop_and_remove(self.runner, self.ctx.config.redis_container, self.ctx.timings.stop_timeout)

        ok = await self.set_ownership(data, 999, 999)
        # AOF rewrite creates temp files next to the data
        ok = await self.set_permissions(data, "0777") and ok

        append_dir = data / "appendonlydir"
        await self.ensure_directory(append_dir)
        ok = await self.set_ownership(append_dir, 999, 999) and ok
        ok = await self.set_permissions(append_dir, "0777") and ok

        for temp_file in self.redis_temp_files():
            if await self.remove_file(temp_file):
                logger.info(f"Removed redis temp file {temp_file.name}")

        conf_dir = data / "conf"
        await self.ensure_directory(conf_dir)
        await self.set_ownership(conf_dir, 999, 999)
        await self.set_permissions(conf_dir, "0755")

        for entry in data.iterdir() if data.is_dir() else []:
            if entry.suffix in (".aof", ".rdb"):
                await self.set_ownership(entry, 999, 999, recursive=False)
                await self.set_permissions(entry, "0644", recursive=False)

        validation = self.validate_volume(data)
        if validation.issues:
            logger.warning(f"Redis volume issues after repair: {validation.issues}")
            ok = await self.set_ownership(data, 999, 999) and ok

        return ok

    async def fix_postgres_permissions(self) -> bool:
        data = self.resolve("postgres-data")
        if not await self.ensure_directory(data):
            return False

        await stop_and_remove(self.runner, self.ctx.config.postgres_container, self.ctx.timings.stop_timeout)

        for lock_name in POSTGRES_LOCK_FILES:
            lock_file = data / lock_name
            if lock_file.exists() and await self.remove_file(lock_file):
                logger.info(f"Removed stale postgres file {lock_name}")

        return await self.apply_standard("postgres-data")

    async def fix_kali_permissions(self) -> bool:
        return await self.apply_standard("kali-data")

    async def fix_upload_permissions(self) -> bool:
        return await self.apply_standard("uploads")

    async def repair_container_volumes(self, container_name: str) -> bool:
        """Repair the volumes a container mounts, then the shared uploads dir."""
        lowered = container_name.lower()
        if "redis" in lowered:
            ok = await self.fix_redis_permissions()
        elif "postgres" in lowered:
            ok = await self.fix_postgres_permissions()
        elif "kali" in lowered:
            ok = await self.fix_kali_permissions()
        else:
            ok = True
        uploads_ok = await self.fix_upload_permissions()
        return ok and uploads_ok

    def report(self) -> dict[str, dict[str, Any]]:
        """Validation results for every standard volume."""
        return {name: self.validate_volume(self.resolve(name)).to_dict() for name in STANDARD_PERMISSIONS}


class RepairVolumePermissionsAction(BaseAction):
    action_type = ActionType.REPAIR_VOLUME_PERMISSIONS
    description = "Repair ownership and permissions of the service's data volumes"

    async def execute(self, error: ClassifiedError) -> bool:
        manager = VolumePermissionManager(self.ctx)
        container = self.container_for(error, default="")
        return await manager.repair_container_volumes(container)
