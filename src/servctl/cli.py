"""
Non-interactive command line for the Docker and FTP managers.

Both commands share the same conventions:
  - ``-y/--yes`` suppresses every confirmation (also inside the consoles)
  - confirmations accept exactly ``y``/``Y``; anything else declines
  - exit code 0 on success and on a declined confirmation, 1 on a missing
    argument, unknown resource, failed mutation or unreachable manager
  - ``interactive`` / ``-i`` starts the curses console

Output goes through rich (tables, JSON) with [INFO]/[OK]/[WARN]/[ERROR]
prefixes; errors go to stderr.
"""

import argparse
import logging
import subprocess
import sys
from typing import Callable, Dict, List, Optional, Sequence

from rich import box
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from . import __version__, configure_logging
from .backend import DockerBackend, ManagerUnavailable, ResourceNotFound
from .config import config_manager
from .main_bulk import NUKE_PROMPTS, run_teardown, teardown_status
from .model import MutationResult, ResourceKind

logger = logging.getLogger(__name__)

console = Console(highlight=False)
err_console = Console(stderr=True, highlight=False)


def print_info(msg: str) -> None:
    console.print(f"[blue]\\[INFO][/blue] {escape(msg)}")


def print_success(msg: str) -> None:
    console.print(f"[green]\\[OK][/green] {escape(msg)}")


def print_warn(msg: str) -> None:
    console.print(f"[yellow]\\[WARN][/yellow] {escape(msg)}")


def print_error(msg: str) -> None:
    err_console.print(f"[red]\\[ERROR][/red] {escape(msg)}")


def print_header(title: str) -> None:
    console.rule(f"[bold cyan]{escape(title)}[/bold cyan]")


def confirm(message: str, skip: bool = False) -> bool:
    """Ask a y/N question on the terminal; only y/Y accepts."""
    if skip:
        return True
    try:
        answer = console.input(f"[yellow]{escape(message)} \\[y/N]: [/yellow]")
    except EOFError:
        return False
    return answer.strip() in ("y", "Y")


def _table(title: str, headers: Sequence[str], rows: List[Sequence[str]]) -> None:
    t = Table(title=title, box=box.SIMPLE_HEAVY, header_style="bold", title_style="bold")
    for h in headers:
        t.add_column(h, overflow="fold")
    for r in rows:
        t.add_row(*[str(c) for c in r])
    console.print(t)


def _report(result: MutationResult, success: str) -> int:
    if result.ok:
        if result.applied == 0 and result.message:
            print_info(result.message)
        else:
            print_success(result.message or success)
        return 0
    if result.applied or result.failed > 1:
        print_error(f"{success}: {result.failed} of {result.applied + result.failed} failed ({result.message})")
    else:
        print_error(result.message)
    return 1


def _require(target: Optional[str], what: str) -> bool:
    if not target:
        print_error(f"{what} required")
        return False
    return True


def _call_with_fallback(commands: Sequence[Sequence[str]]) -> int:
    rc = 1
    for cmd in commands:
        try:
            rc = subprocess.call(list(cmd))
        except OSError as e:
            print_error(f"Cannot run {cmd[0]}: {e}")
            rc = 127
        if rc == 0:
            break
    return rc


# --- Docker commands ---

def cmd_list(args, backend: DockerBackend) -> int:
    print_header("Docker Containers")
    containers = backend.list_containers()
    running = sum(1 for c in containers if c.is_running)
    console.print(f"[bold]Summary:[/bold] {running} running / {len(containers)} total")
    if not containers:
        print_info("No containers found")
        return 0
    _table("", ["ID", "NAME", "IMAGE", "STATUS", "PORTS"],
           [(c.short_id, c.name, c.image, c.status, c.ports) for c in containers])
    return 0


def cmd_images(args, backend: DockerBackend) -> int:
    print_header("Docker Images")
    images = backend.list_images()
    dangling = sum(1 for i in images if i.dangling)
    console.print(f"[bold]Summary:[/bold] {len(images)} total / {dangling} dangling")
    if not images:
        print_info("No images found")
        return 0
    _table("", ["ID", "REPOSITORY:TAG", "SIZE", "CREATED"],
           [(i.short_id, i.display_name, f"{i.size_mb:.1f}MB", i.created) for i in images])
    return 0


def cmd_volumes(args, backend: DockerBackend) -> int:
    print_header("Docker Volumes")
    volumes = backend.list_volumes()
    index = backend.usage_index(volumes)
    unused = sum(1 for v in volumes if not index[v.name].referencing_containers)
    console.print(f"[bold]Summary:[/bold] {len(volumes)} total / {unused} unused")
    if not volumes:
        print_info("No volumes found")
        return 0
    rows = []
    for v in volumes:
        usage = index[v.name]
        style = "green" if usage.referencing_containers else "yellow"
        rows.append((v.name, v.driver, f"[{style}]{escape(usage.used_by)}[/{style}]", usage.originating_image))
    _table("", ["NAME", "DRIVER", "USED BY", "IMAGE"], rows)
    return 0


def cmd_networks(args, backend: DockerBackend) -> int:
    print_header("Docker Networks")
    networks = backend.list_networks()
    console.print(f"[bold]Summary:[/bold] {len(networks)} total")
    _table("", ["ID", "NAME", "DRIVER", "SCOPE"],
           [(n.short_id, n.name, n.driver, n.scope) for n in networks])
    return 0


def _single(kind: ResourceKind, verb: str, done: str, prompt: Optional[str] = None):
    def handler(args, backend: DockerBackend) -> int:
        if not _require(args.target, f"{kind.singular.capitalize()} name or ID"):
            return 1
        if kind == ResourceKind.NETWORKS and backend.is_protected_network(args.target):
            print_error("Cannot delete default network")
            return 1
        if prompt and not confirm(prompt.format(name=args.target), args.yes):
            print_info("Cancelled")
            return 0
        result = backend.mutate(kind, verb, args.target)
        if not result.ok:
            print_error(f"Failed to {verb} {kind.singular} '{args.target}': {result.message}")
            return 1
        return _report(result, f"{kind.singular.capitalize()} '{args.target}' {done}")
    return handler


def cmd_destroy(args, backend: DockerBackend) -> int:
    if not _require(args.target, "Container name or ID"):
        return 1
    backend.inspect(ResourceKind.CONTAINERS, args.target)
    print_warn(f"This will remove container '{args.target}' and its associated volumes")
    if not confirm("Continue?", args.yes):
        print_info("Cancelled")
        return 0
    return _report(backend.mutate(ResourceKind.CONTAINERS, "destroy", args.target),
                   f"Container '{args.target}' destroyed")


def cmd_logs(args, backend: DockerBackend) -> int:
    if not _require(args.target, "Container name or ID"):
        return 1
    tail = args.tail if args.tail is not None else "all"
    if args.follow:
        try:
            for chunk in backend.stream_logs(args.target, tail=tail, follow=True):
                sys.stdout.write(chunk.decode("utf-8", errors="replace"))
                sys.stdout.flush()
        except KeyboardInterrupt:
            pass
        return 0
    lines = backend.get_logs(args.target, tail=tail)
    for line in lines:
        print(line)
    return 0


def cmd_shell(args, backend: DockerBackend) -> int:
    if not _require(args.target, "Container name or ID"):
        return 1
    backend.inspect(ResourceKind.CONTAINERS, args.target)
    cfg = config_manager.get_config().docker
    return _call_with_fallback(backend.shell_command(args.target, cfg.default_shell, cfg.fallback_shell))


def cmd_inspect(args, backend: DockerBackend) -> int:
    if not _require(args.target, "Container name or ID"):
        return 1
    console.print_json(data=backend.inspect(ResourceKind.CONTAINERS, args.target), default=str)
    return 0


def _bulk(kind: ResourceKind, verb: str, done: str,
          warning: Optional[str] = None, prompt: Optional[str] = "Continue?"):
    def handler(args, backend: DockerBackend) -> int:
        if warning:
            print_warn(warning)
        if prompt and not confirm(prompt, args.yes):
            print_info("Cancelled")
            return 0
        return _report(backend.mutate(kind, verb), done)
    return handler


def cmd_prune(args, backend: DockerBackend) -> int:
    print_warn("This will remove: all stopped containers, all unused networks, "
               "all dangling images, all build cache")
    if not confirm("Continue?", args.yes):
        print_info("Cancelled")
        return 0
    return _report(backend.prune_system(), "Docker system pruned")


def cmd_nuke(args, backend: DockerBackend) -> int:
    print_header("NUCLEAR OPTION")
    print_error("WARNING: This will completely reset Docker!")
    print_error("ALL containers, images, volumes, and networks will be DELETED!")
    for prompt in NUKE_PROMPTS:
        if not confirm(prompt, args.yes):
            print_info("Cancelled")
            return 0
    results = run_teardown(backend, progress=lambda step: print_info(f"{step}..."))
    for r in results:
        if not r.ok:
            print_warn(f"{r.step}: {r.detail}")
    status = teardown_status(results)
    if all(r.ok for r in results):
        print_success(status.text)
        return 0
    print_error(status.text)
    return 1


def cmd_stats(args, backend: DockerBackend) -> int:
    print_header("Container Resource Usage")
    rows = backend.stats_rows()
    if not rows:
        print_info("No running containers")
        return 0
    _table("", ["CONTAINER", "NAME", "CPU %", "MEM"], rows)
    return 0


def cmd_disk(args, backend: DockerBackend) -> int:
    print_header("Docker Disk Usage")
    _table("", ["TYPE", "TOTAL", "SIZE"],
           [(kind, count, f"{size:.1f}MB") for kind, count, size in backend.disk_usage()])
    return 0


def cmd_info(args, backend: DockerBackend) -> int:
    console.print_json(data=backend.info(), default=str)
    return 0


DOCKER_COMMANDS: Dict[str, Callable] = {
    "list": cmd_list,
    "stop-all": _bulk(ResourceKind.CONTAINERS, "stop_all", "All containers stopped"),
    "start": _single(ResourceKind.CONTAINERS, "start", "started"),
    "stop": _single(ResourceKind.CONTAINERS, "stop", "stopped"),
    "restart": _single(ResourceKind.CONTAINERS, "restart", "restarted"),
    "logs": cmd_logs,
    "shell": cmd_shell,
    "inspect": cmd_inspect,
    "rm": _single(ResourceKind.CONTAINERS, "remove", "removed", "Remove container '{name}'?"),
    "rm-all": _bulk(ResourceKind.CONTAINERS, "remove_all", "All containers removed"),
    "images": cmd_images,
    "rmi": _single(ResourceKind.IMAGES, "remove", "removed", "Remove image '{name}'?"),
    "rmi-all": _bulk(ResourceKind.IMAGES, "remove_all", "All images removed"),
    "rmi-dangling": _bulk(ResourceKind.IMAGES, "remove_dangling", "Dangling images removed", prompt=None),
    "volumes": cmd_volumes,
    "rmv": _single(ResourceKind.VOLUMES, "remove", "removed", "Remove volume '{name}'?"),
    "rmv-all": _bulk(ResourceKind.VOLUMES, "prune_volumes", "Unused volumes removed",
                     "This will remove all unused volumes"),
    "rmv-force": _bulk(ResourceKind.VOLUMES, "remove_all", "All volumes removed",
                       "WARNING: This will forcefully remove ALL volumes! This may cause data loss!",
                       "Are you absolutely sure?"),
    "networks": cmd_networks,
    "rmn": _single(ResourceKind.NETWORKS, "remove", "removed", "Remove network '{name}'?"),
    "rmn-all": _bulk(ResourceKind.NETWORKS, "remove_all", "Custom networks removed"),
    "prune": cmd_prune,
    "nuke": cmd_nuke,
    "destroy": cmd_destroy,
    "stats": cmd_stats,
    "disk": cmd_disk,
    "info": cmd_info,
}

_DOCKER_HELP = {
    "list": "List all containers with status",
    "stop-all": "Stop all running containers",
    "start": "Start a container",
    "stop": "Stop a container",
    "restart": "Restart a container",
    "logs": "Show container logs",
    "shell": "Open shell in container",
    "inspect": "Show container details",
    "rm": "Remove a container",
    "rm-all": "Remove all containers",
    "images": "List all images",
    "rmi": "Remove an image",
    "rmi-all": "Remove all images (forced)",
    "rmi-dangling": "Remove dangling images",
    "volumes": "List all volumes with the containers using them",
    "rmv": "Remove a volume",
    "rmv-all": "Remove all unused volumes",
    "rmv-force": "Remove ALL volumes (dangerous!)",
    "networks": "List all networks",
    "rmn": "Remove a network",
    "rmn-all": "Remove all custom networks",
    "prune": "Remove unused containers, networks, images",
    "nuke": "DANGER: Complete Docker reset (removes EVERYTHING)",
    "destroy": "Remove container and its volumes",
    "stats": "Show resource usage",
    "disk": "Show Docker disk usage",
    "info": "Show Docker system info",
}

_TARGET_COMMANDS = ("start", "stop", "restart", "logs", "shell", "inspect", "rm", "rmi", "rmv", "rmn", "destroy")


def _common_args(ap: argparse.ArgumentParser) -> None:
    ap.add_argument("-y", "--yes", action="store_true", help="Skip confirmation prompts.")
    ap.add_argument("-i", "--interactive", action="store_true", help="Launch interactive console.")
    ap.add_argument("-v", "--verbose", action="store_true", help="Log at DEBUG level.")
    ap.add_argument("-V", "--version", action="version", version=f"%(prog)s {__version__}")


def _subcommand_flags() -> argparse.ArgumentParser:
    """Flags also accepted after the subcommand (``nuke -y``)."""
    common = argparse.ArgumentParser(add_help=False)
    # SUPPRESS keeps a flag given before the subcommand from being reset
    common.add_argument("-y", "--yes", action="store_true", default=argparse.SUPPRESS,
                        help="Skip confirmation prompts.")
    common.add_argument("-v", "--verbose", action="store_true", default=argparse.SUPPRESS,
                        help="Log at DEBUG level.")
    return common


def build_docker_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="servctl-docker", description="Docker management.")
    _common_args(ap)
    sp = ap.add_subparsers(dest="cmd")
    common = _subcommand_flags()
    sp.add_parser("interactive", parents=[common], help="Launch interactive console.")
    for name, help_text in _DOCKER_HELP.items():
        aliases = ["ls"] if name == "list" else []
        p = sp.add_parser(name, aliases=aliases, parents=[common], help=help_text)
        if name in _TARGET_COMMANDS:
            p.add_argument("target", nargs="?", metavar="id|name")
        if name == "logs":
            p.add_argument("-f", "--follow", action="store_true", help="Follow log output.")
            p.add_argument("--tail", type=int, default=None, help="Number of lines from the end.")
    return ap


def docker_main(argv: Optional[List[str]] = None) -> int:
    ap = build_docker_parser()
    args = ap.parse_args(argv)
    # argparse stores the alias as typed
    if args.cmd == "ls":
        args.cmd = "list"
    configure_logging("DEBUG" if args.verbose else None)

    if args.interactive or args.cmd == "interactive":
        from .main import run_docker_console
        return run_docker_console(skip_confirm=args.yes)
    if not args.cmd:
        ap.print_help()
        return 0

    logger.info(f"docker command: {args.cmd}")
    try:
        backend = DockerBackend(protected_networks=config_manager.get_config().docker.protected_networks)
        return DOCKER_COMMANDS[args.cmd](args, backend)
    except ManagerUnavailable as e:
        print_error(f"Docker daemon is not running or you don't have permission ({e})")
        print_info("Try: sudo systemctl start docker")
        return 1
    except ResourceNotFound as e:
        print_error(str(e))
        return 1


# --- FTP commands ---

def _ftp_backend():
    from .ftp import FtpBackend
    return FtpBackend(config_manager.get_config().ftp)


def cmd_ftp_status(args, ftp) -> int:
    print_header("FTP Server Status")
    st = ftp.status()
    if not st.installed:
        console.print("  [bold]Installed:[/bold]    [red]No[/red]")
        print_info("Run 'servctl-ftp install' to install vsftpd")
        return 0
    rows = [
        ("Installed", "[green]Yes[/green]"),
        ("Status", "[green]Running[/green]" if st.running else "[red]Stopped[/red]"),
        ("Port", st.port),
        ("FTP Root", escape(st.root)),
        ("Anonymous", st.anonymous),
        ("Uploads", f"[green]Enabled[/green] (to {escape(st.root)}/uploads)" if st.uploads
         else "[yellow]Disabled[/yellow] (read-only)"),
        ("Passive Mode", f"[green]Enabled[/green] (ports {st.passive_range})" if st.passive
         else "[yellow]Disabled[/yellow]"),
    ]
    if st.passive and st.pasv_address:
        rows.append(("Passive IP", st.pasv_address))
    t = Table(box=box.SIMPLE_HEAVY, show_header=False)
    t.add_column("Key", style="bold")
    t.add_column("Value")
    for k, v in rows:
        t.add_row(k, v)
    console.print(t)
    console.print("  [bold]Connect via:[/bold]")
    for ip in st.addresses or ("localhost",):
        console.print(f"    ftp://{ip}:{st.port}")
    contents = ftp.root_contents()
    if contents is None:
        console.print("  [bold]Root Contents:[/bold] [yellow]Directory does not exist[/yellow]")
    else:
        console.print(f"  [bold]Root Contents:[/bold] {contents[0]} files, {contents[1]} directories")
    return 0


def cmd_ftp_config(args, ftp) -> int:
    print_header("vsftpd Configuration")
    if not ftp.config.exists():
        print_error(f"Configuration file not found: {ftp.config.path}")
        return 1
    for entry in ftp.config.entries():
        console.print(f"  [bold]{escape(entry.key):<25}[/bold] {escape(entry.value)}")
    return 0


def cmd_ftp_logs(args, ftp) -> int:
    print_header("FTP Server Logs")
    for line in ftp.logs(50):
        print(line)
    return 0


def _print_connect_urls(ftp) -> None:
    print_info("Connect from clients on your network:")
    for ip in ftp.addresses():
        console.print(f"       [cyan]ftp://{ip}:{ftp.port}[/cyan]")


def cmd_ftp_install(args, ftp) -> int:
    if ftp.is_installed():
        print_warn("vsftpd is already installed")
        if confirm("Run setup to reconfigure for anonymous access?", args.yes):
            return _report(ftp.configure(), "vsftpd configured")
        return 0
    print_info("Installing vsftpd...")
    return _report(ftp.install(), "vsftpd installed")


def cmd_ftp_setup(args, ftp) -> int:
    return _report(ftp.configure(args.path), "vsftpd configured")


def cmd_ftp_uninstall(args, ftp) -> int:
    if not ftp.is_installed():
        print_warn("vsftpd is not installed")
        return 0
    print_warn("This will remove vsftpd and its configuration")
    if not confirm("Continue with uninstall?", args.yes):
        print_info("Cancelled")
        return 0
    return _report(ftp.uninstall(), "vsftpd removed")


def _service(method: str):
    def handler(args, ftp) -> int:
        result = getattr(ftp, method)()
        rc = _report(result, result.message)
        if rc == 0 and result.applied and method in ("start", "restart"):
            print_info(f"Listening on port {ftp.port}")
            print_info(f"FTP root: {ftp.root}")
            _print_connect_urls(ftp)
        return rc
    return handler


def cmd_ftp_set_root(args, ftp) -> int:
    from .ftp import FtpError
    if not _require(args.path, "Directory path"):
        return 1
    try:
        return _report(ftp.set_root(args.path), "FTP root set")
    except FtpError as e:
        print_warn(str(e))
        if not confirm("Create it?", args.yes):
            return 1
        return _report(ftp.set_root(args.path, create=True), "FTP root set")


def cmd_ftp_set_port(args, ftp) -> int:
    if not _require(args.port, "Port number"):
        return 1
    rc = _report(ftp.set_port(args.port), "FTP port set")
    if rc == 0:
        print_warn("Remember to update firewall if needed: servctl-ftp open-firewall")
    return rc


def _simple(method: str, done: str):
    def handler(args, ftp) -> int:
        return _report(getattr(ftp, method)(), done)
    return handler


def cmd_ftp_firewall_status(args, ftp) -> int:
    print_header("Firewall Status")
    for line in ftp.firewall_status():
        console.print(f"  {escape(line)}")
    return 0


def _print_checks(checks) -> int:
    total = len(checks)
    for i, check in enumerate(checks, 1):
        label = f"[{i}/{total}] {check.name}: {check.detail}"
        if check.ok:
            print_success(label)
        else:
            print_error(label)
    issues = sum(1 for c in checks if not c.ok)
    if issues:
        print_warn(f"Found {issues} issue(s) - see above")
        return 1
    print_success("All checks passed!")
    return 0


def cmd_ftp_test(args, ftp) -> int:
    print_header("FTP Connection Test")
    if not ftp.is_installed():
        print_error("vsftpd is not installed")
        return 1
    if not ftp.is_running():
        print_error("FTP server is not running")
        return 1
    rc = _print_checks(ftp.test_connection())
    if rc == 0:
        _print_connect_urls(ftp)
    return rc


def cmd_ftp_diagnose(args, ftp) -> int:
    print_header("FTP Server Diagnostics")
    return _print_checks(ftp.diagnose())


FTP_COMMANDS: Dict[str, Callable] = {
    "install": cmd_ftp_install,
    "setup": cmd_ftp_setup,
    "uninstall": cmd_ftp_uninstall,
    "start": _service("start"),
    "stop": _service("stop"),
    "restart": _service("restart"),
    "status": cmd_ftp_status,
    "set-root": cmd_ftp_set_root,
    "set-port": cmd_ftp_set_port,
    "enable-uploads": _simple("enable_uploads", "Uploads enabled"),
    "disable-uploads": _simple("disable_uploads", "Uploads disabled"),
    "config": cmd_ftp_config,
    "logs": cmd_ftp_logs,
    "open-firewall": _simple("open_firewall", "Firewall ports opened"),
    "close-firewall": _simple("close_firewall", "Firewall ports closed"),
    "firewall-status": cmd_ftp_firewall_status,
    "test": cmd_ftp_test,
    "diagnose": cmd_ftp_diagnose,
}

_FTP_HELP = {
    "install": "Install vsftpd and configure anonymous access",
    "setup": "Configure vsftpd for anonymous access",
    "uninstall": "Remove vsftpd",
    "start": "Start the FTP server",
    "stop": "Stop the FTP server",
    "restart": "Restart the FTP server",
    "status": "Show server status",
    "set-root": "Set the FTP root directory",
    "set-port": "Set the FTP listen port",
    "enable-uploads": "Allow anonymous uploads to <root>/uploads",
    "disable-uploads": "Make the server read-only",
    "config": "Show the vsftpd configuration",
    "logs": "Show server logs",
    "open-firewall": "Open FTP ports in ufw/iptables",
    "close-firewall": "Close FTP ports in ufw/iptables",
    "firewall-status": "Show firewall state for FTP ports",
    "test": "Test an anonymous connection",
    "diagnose": "Run full diagnostics",
}


def build_ftp_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="servctl-ftp", description="Anonymous FTP server (vsftpd) management.")
    _common_args(ap)
    sp = ap.add_subparsers(dest="cmd")
    common = _subcommand_flags()
    sp.add_parser("interactive", parents=[common], help="Launch interactive console.")
    for name, help_text in _FTP_HELP.items():
        p = sp.add_parser(name, parents=[common], help=help_text)
        if name in ("setup", "set-root"):
            p.add_argument("path", nargs="?")
        if name == "set-port":
            p.add_argument("port", nargs="?")
    return ap


def ftp_main(argv: Optional[List[str]] = None) -> int:
    from .ftp import FtpError

    ap = build_ftp_parser()
    args = ap.parse_args(argv)
    configure_logging("DEBUG" if args.verbose else None)

    if args.interactive or args.cmd == "interactive":
        from .main import run_ftp_console
        return run_ftp_console(skip_confirm=args.yes)
    if not args.cmd:
        ap.print_help()
        return 0

    logger.info(f"ftp command: {args.cmd}")
    try:
        return FTP_COMMANDS[args.cmd](args, _ftp_backend())
    except FtpError as e:
        print_error(str(e))
        return 1
