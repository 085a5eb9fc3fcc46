"""
Engine request creation helpers.

One builder per operation kind; each returns a write-once OperationRequest.
"""

from typing import Optional

from live_migration.config.settings import MigrationConfig, MigrationSettings

from .protocol import EngineOptions, OperationRequest, PageServerInfo, RequestKind


def _page_transfer(config: MigrationConfig) -> PageServerInfo:
    return PageServerInfo(fd=config.memory_fd)


def _dump_flags(config: MigrationConfig) -> dict:
    return {
        "tcp_established": config.tcp_established,
        "shell_job": config.shell_job,
        "ext_unix_sk": config.ext_unix_sk,
        "file_locks": config.file_locks,
    }


def make_pre_dump_request(config: MigrationConfig, settings: MigrationSettings,
        images_dir_fd: int, parent_img: Optional[str] = None) -> OperationRequest:
    """Prepare pre-dump request (source side)"""
    opts = EngineOptions(
        pid=config.pid,
        images_dir_fd=images_dir_fd,
        page_server=_page_transfer(config),
        parent_img=parent_img,
        track_mem=False,
        log_level=settings.get("log_level"),
        log_file=settings.log_file("pre_dump"),
    )
    return OperationRequest(RequestKind.PRE_DUMP, opts)


def make_dump_request(config: MigrationConfig, settings: MigrationSettings,
        images_dir_fd: int, parent_img: Optional[str] = None) -> OperationRequest:
    """Prepare final dump request (source side)

    Lazy dumps leave pages behind for on-demand delivery and carry no
    parent; eager dumps are taken against the last pre-dump round.
    """
    opts = EngineOptions(
        pid=config.pid,
        images_dir_fd=images_dir_fd,
        page_server=_page_transfer(config),
        track_mem=True,
        lazy_pages=True if config.lazy else None,
        parent_img=None if config.lazy else parent_img,
        leave_running=config.leave_running,
        notify_scripts=True,
        log_level=settings.get("log_level"),
        log_file=settings.log_file("dump"),
        **_dump_flags(config)
    )
    return OperationRequest(RequestKind.DUMP, opts)


def make_page_server_request(config: MigrationConfig, settings: MigrationSettings,
        images_dir_fd: int, parent_img: Optional[str] = None,
        child: bool = True) -> OperationRequest:
    """Prepare page server request (destination side)"""
    kind = RequestKind.PAGE_SERVER_CHILD if child else RequestKind.PAGE_SERVER
    opts = EngineOptions(
        images_dir_fd=images_dir_fd,
        page_server=_page_transfer(config),
        parent_img=parent_img,
        log_level=settings.get("log_level"),
        log_file=settings.log_file("page_server"),
    )
    return OperationRequest(kind, opts)


def make_lazy_pages_request(config: MigrationConfig, settings: MigrationSettings,
        images_dir_fd: int) -> OperationRequest:
    """Prepare on-demand page listener request (destination side)"""
    opts = EngineOptions(
        images_dir_fd=images_dir_fd,
        page_server=_page_transfer(config),
        lazy_pages=True,
        log_level=settings.get("log_level"),
        log_file=settings.log_file("lazy_pages"),
    )
    return OperationRequest(RequestKind.LAZY_PAGES, opts)


def make_restore_request(config: MigrationConfig, settings: MigrationSettings,
        images_dir_fd: int) -> OperationRequest:
    """Prepare restore request (destination side)"""
    opts = EngineOptions(
        images_dir_fd=images_dir_fd,
        lazy_pages=config.lazy,
        log_level=settings.get("log_level"),
        log_file=settings.log_file("restore"),
        **_dump_flags(config)
    )
    return OperationRequest(RequestKind.RESTORE, opts)
