"""
vsftpd adapter: configuration file, service control, firewall and checks.

The server is driven through its configuration file and the system tools
(systemctl, apt-get, journalctl, ufw/iptables, hostname, ss) via subprocess.
Commands run without sudo; write operations need root.

Error Handling:
  - Operations return a MutationResult (ok + message), never raise for a
    failed system command
  - FtpError is raised for invalid input (port, directory) and for
    operations that need vsftpd installed when it is not
"""

import datetime
import ftplib
import io
import logging
import os
import re
import shutil
import subprocess
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from .config import FtpConfig
from .model import CheckResult, ConfigEntry, FtpStatus, MutationResult

logger = logging.getLogger(__name__)

SECURE_CHROOT_DIR = "/var/run/vsftpd/empty"
UPLOAD_FLAGS = ("write_enable", "anon_upload_enable", "anon_mkdir_write_enable")
_IPV4 = re.compile(r"^\d+\.\d+\.\d+\.\d+$")

CONFIG_TEMPLATE = """\
# vsftpd configuration - Anonymous FTP Server
# Generated by servctl

# Run in standalone mode
listen=YES
listen_ipv6=NO

# Anonymous access settings
anonymous_enable=YES
anon_root={root}
no_anon_password=YES

# Security settings - read-only by default
local_enable=NO
write_enable=NO
anon_upload_enable=NO
anon_mkdir_write_enable=NO

# Connection settings
connect_from_port_20=YES
listen_port=21

# Passive mode (required for NAT/firewalls and older clients)
pasv_enable=YES
pasv_min_port={pasv_min_port}
pasv_max_port={pasv_max_port}
pasv_addr_resolve=NO
pasv_address={pasv_address}

# Logging
xferlog_enable=YES
xferlog_std_format=YES

# Misc
dirmessage_enable=YES
use_localtime=YES
secure_chroot_dir={secure_chroot_dir}
pam_service_name=vsftpd

# Banner
ftpd_banner=Welcome to FTP Server
"""


class FtpError(Exception):
    """Invalid input, or vsftpd missing for an operation that needs it."""


def run_command(cmd: Sequence[str], capture: bool = True,
                timeout: Optional[float] = None) -> subprocess.CompletedProcess:
    """Run a system command; a missing executable reports exit code 127."""
    logger.debug(f"Running: {' '.join(cmd)}")
    try:
        return subprocess.run(list(cmd), check=False, capture_output=capture,
                              text=True, timeout=timeout)
    except FileNotFoundError:
        logger.warning(f"Command not found: {cmd[0]}")
        return subprocess.CompletedProcess(list(cmd), 127, "", f"{cmd[0]}: command not found")


def find_tool(name: str) -> Optional[str]:
    search = os.pathsep.join([os.environ.get("PATH", ""), "/usr/sbin", "/sbin"])
    return shutil.which(name, path=search)


class VsftpdConfig:
    """``key=value`` view of the vsftpd configuration file."""

    def __init__(self, path: str):
        self.path = Path(path)

    def exists(self) -> bool:
        return self.path.is_file()

    def _lines(self) -> List[str]:
        if not self.exists():
            return []
        return self.path.read_text().splitlines()

    def entries(self) -> List[ConfigEntry]:
        res = []
        for lineno, line in enumerate(self._lines(), 1):
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            if "=" not in line:
                logger.warning(f"{self.path}:{lineno}: ignoring malformed line {line!r}")
                continue
            key, value = line.split("=", 1)
            res.append(ConfigEntry(key.strip(), value.strip()))
        return res

    def get(self, key: str, default: str = "") -> str:
        """Last assignment wins; empty values fall back to ``default``."""
        value = ""
        for entry in self.entries():
            if entry.key == key:
                value = entry.value
        return value or default

    def set(self, key: str, value: str) -> None:
        """
        Assign ``key`` in place.

        Existing ``key=`` lines are rewritten; otherwise commented ``#key=``
        lines are uncommented; otherwise the assignment is appended.
        """
        lines = self._lines()
        new_line = f"{key}={value}"
        active = [i for i, l in enumerate(lines) if l.startswith(f"{key}=")]
        commented = [i for i, l in enumerate(lines) if l.startswith(f"#{key}=")]
        targets = active or commented
        if targets:
            for i in targets:
                lines[i] = new_line
        else:
            lines.append(new_line)
        self.path.write_text("\n".join(lines) + "\n")
        logger.info(f"Set {key}={value} in {self.path}")

    def backup(self) -> Optional[Path]:
        if not self.exists():
            return None
        stamp = datetime.datetime.now().strftime("%Y%m%d%H%M%S")
        dest = self.path.with_name(f"{self.path.name}.backup.{stamp}")
        shutil.copy2(self.path, dest)
        logger.info(f"Backed up {self.path} to {dest}")
        return dest

    def write(self, text: str) -> None:
        self.path.write_text(text)


class FtpBackend:
    def __init__(self, cfg: Optional[FtpConfig] = None, runner=run_command):
        self.cfg = cfg or FtpConfig()
        self.run = runner
        self.config = VsftpdConfig(self.cfg.config_path)

    # --- State ---

    def is_installed(self) -> bool:
        return find_tool("vsftpd") is not None

    def is_running(self) -> bool:
        return self.run(["systemctl", "is-active", "--quiet", self.cfg.service]).returncode == 0

    def _require_installed(self) -> None:
        if not self.is_installed():
            raise FtpError("vsftpd is not installed")

    @property
    def root(self) -> str:
        return self.config.get("anon_root", self.cfg.default_root)

    @property
    def port(self) -> str:
        return self.config.get("listen_port", "21")

    def passive_ports(self) -> Tuple[str, str]:
        return (self.config.get("pasv_min_port", str(self.cfg.pasv_min_port)),
                self.config.get("pasv_max_port", str(self.cfg.pasv_max_port)))

    def addresses(self, ipv4_only: bool = True) -> Tuple[str, ...]:
        proc = self.run(["hostname", "-I"])
        if proc.returncode != 0:
            return ()
        ips = proc.stdout.split()
        if ipv4_only:
            ips = [ip for ip in ips if _IPV4.match(ip)]
        return tuple(ips[:5])

    def status(self) -> FtpStatus:
        if not self.is_installed():
            return FtpStatus(installed=False)
        pasv_min, pasv_max = self.passive_ports()
        return FtpStatus(
            installed=True,
            running=self.is_running(),
            port=self.port,
            root=self.root,
            anonymous=self.config.get("anonymous_enable", "NO"),
            uploads=self.config.get("anon_upload_enable", "NO") == "YES",
            passive=self.config.get("pasv_enable", "NO") == "YES",
            pasv_min_port=pasv_min,
            pasv_max_port=pasv_max,
            pasv_address=self.config.get("pasv_address", ""),
            addresses=self.addresses(),
        )

    def root_contents(self) -> Optional[Tuple[int, int]]:
        """(files, directories) directly under the root, None when missing."""
        root = Path(self.root)
        if not root.is_dir():
            return None
        files = dirs = 0
        for child in root.iterdir():
            if child.is_dir():
                dirs += 1
            elif child.is_file():
                files += 1
        return files, dirs

    # --- Service ---

    def _systemctl(self, verb: str) -> bool:
        proc = self.run(["systemctl", verb, self.cfg.service])
        if proc.returncode != 0:
            logger.error(f"systemctl {verb} {self.cfg.service} failed: {proc.stderr.strip()}")
        return proc.returncode == 0

    def start(self) -> MutationResult:
        self._require_installed()
        if self.is_running():
            return MutationResult(True, "Already running", applied=0)
        self._systemctl("start")
        self.run(["systemctl", "enable", self.cfg.service])
        if self.is_running():
            return MutationResult.success("FTP server started")
        return MutationResult.failure("Failed to start")

    def stop(self) -> MutationResult:
        self._require_installed()
        if not self.is_running():
            return MutationResult(True, "Already stopped", applied=0)
        self._systemctl("stop")
        return MutationResult.success("FTP server stopped")

    def restart(self) -> MutationResult:
        self._require_installed()
        self._systemctl("restart")
        if self.is_running():
            return MutationResult.success("FTP server restarted")
        return MutationResult.failure("Failed to restart")

    def _restart_if_running(self) -> None:
        if self.is_running():
            logger.info("Restarting FTP server to apply changes")
            self._systemctl("restart")

    # --- Installation ---

    def install(self) -> MutationResult:
        if self.is_installed():
            return MutationResult(True, "vsftpd is already installed", applied=0)
        if find_tool("apt-get") is None:
            return MutationResult.failure("No supported package manager found (apt-get)")
        for cmd in (["apt-get", "update"], ["apt-get", "install", "-y", "vsftpd"]):
            if self.run(cmd, capture=False).returncode != 0:
                return MutationResult.failure(f"'{' '.join(cmd)}' failed")
        logger.info("vsftpd installed")
        return self.configure()

    def uninstall(self) -> MutationResult:
        if not self.is_installed():
            return MutationResult(True, "vsftpd is not installed", applied=0)
        if self.is_running():
            self._systemctl("stop")
        if self.run(["apt-get", "remove", "-y", "vsftpd"], capture=False).returncode != 0:
            return MutationResult.failure("apt-get remove failed")
        self.run(["apt-get", "autoremove", "-y"], capture=False)
        return MutationResult.success("vsftpd removed (FTP root directory was not removed)")

    def configure(self, root: Optional[str] = None) -> MutationResult:
        """Rewrite the configuration for anonymous read-only access."""
        self._require_installed()
        root = os.path.abspath(root or self.cfg.default_root)
        try:
            os.makedirs(root, exist_ok=True)
            os.chmod(root, 0o755)
            self.config.backup()
            addresses = self.addresses()
            self.config.write(CONFIG_TEMPLATE.format(
                root=root,
                pasv_min_port=self.cfg.pasv_min_port,
                pasv_max_port=self.cfg.pasv_max_port,
                pasv_address=addresses[0] if addresses else "",
                secure_chroot_dir=SECURE_CHROOT_DIR,
            ))
            os.makedirs(SECURE_CHROOT_DIR, exist_ok=True)
        except OSError as e:
            logger.error(f"Configuring vsftpd failed: {e}")
            return MutationResult.failure(str(e))
        self._restart_if_running()
        return MutationResult.success(f"vsftpd configured for anonymous access (root: {root})")

    # --- Settings ---

    def set_root(self, path: str, create: bool = False) -> MutationResult:
        if not path:
            raise FtpError("Please specify a directory path")
        new_root = os.path.abspath(os.path.expanduser(path))
        if not os.path.isdir(new_root):
            if not create:
                raise FtpError(f"Directory does not exist: {new_root}")
            try:
                os.makedirs(new_root)
                os.chmod(new_root, 0o755)
            except OSError as e:
                logger.error(f"Cannot create {new_root}: {e}")
                return MutationResult.failure("Failed to create directory")
        try:
            self.config.set("anon_root", new_root)
        except OSError as e:
            return MutationResult.failure(str(e))
        self._restart_if_running()
        return MutationResult.success(f"FTP root set to: {new_root}")

    @staticmethod
    def validate_port(value: str) -> int:
        if not str(value).isdigit() or not 1 <= int(value) <= 65535:
            raise FtpError(f"Invalid port number: {value}")
        return int(value)

    def set_port(self, value: str) -> MutationResult:
        port = self.validate_port(value)
        try:
            self.config.set("listen_port", str(port))
        except OSError as e:
            return MutationResult.failure(str(e))
        self._restart_if_running()
        return MutationResult.success(f"FTP port set to: {port}")

    def enable_uploads(self) -> MutationResult:
        self._require_installed()
        uploads = os.path.join(self.root, "uploads")
        try:
            os.makedirs(uploads, exist_ok=True)
            shutil.chown(uploads, "ftp", "ftp")
            os.chmod(uploads, 0o777)
            for flag in UPLOAD_FLAGS:
                self.config.set(flag, "YES")
        except (OSError, LookupError) as e:
            logger.error(f"Enabling uploads failed: {e}")
            return MutationResult.failure(str(e))
        self._restart_if_running()
        return MutationResult.success(f"Uploads enabled ({uploads})")

    def disable_uploads(self) -> MutationResult:
        self._require_installed()
        try:
            for flag in UPLOAD_FLAGS:
                self.config.set(flag, "NO")
        except OSError as e:
            return MutationResult.failure(str(e))
        self._restart_if_running()
        return MutationResult.success("Write access disabled - FTP is now read-only")

    # --- Firewall ---

    def firewall(self) -> Optional[str]:
        """Active firewall frontend: "ufw", "iptables" or None."""
        if find_tool("ufw"):
            proc = self.run(["ufw", "status"])
            if proc.returncode == 0 and "Status: active" in proc.stdout:
                return "ufw"
        if find_tool("iptables"):
            proc = self.run(["iptables", "-L", "INPUT", "-n"])
            if proc.returncode == 0 and len(proc.stdout.splitlines()) > 2:
                return "iptables"
        return None

    def open_firewall(self) -> MutationResult:
        pasv_min, pasv_max = self.passive_ports()
        fw = self.firewall()
        if fw == "ufw":
            cmds = [["ufw", "allow", f"{self.port}/tcp", "comment", "FTP control"],
                    ["ufw", "allow", f"{pasv_min}:{pasv_max}/tcp", "comment", "FTP passive mode"]]
        elif fw == "iptables":
            cmds = [["iptables", "-A", "INPUT", "-p", "tcp", "--dport", self.port, "-j", "ACCEPT"],
                    ["iptables", "-A", "INPUT", "-p", "tcp", "--dport", f"{pasv_min}:{pasv_max}", "-j", "ACCEPT"]]
        else:
            return MutationResult(True, "No active firewall detected (ufw/iptables)", applied=0)
        failed = [c for c in cmds if self.run(c).returncode != 0]
        if failed:
            return MutationResult.failure(f"Opening firewall ports failed ({fw})", failed=len(failed))
        return MutationResult.success(f"Firewall ports opened ({fw})", applied=len(cmds))

    def close_firewall(self) -> MutationResult:
        pasv_min, pasv_max = self.passive_ports()
        fw = self.firewall()
        if fw == "ufw":
            cmds = [["ufw", "delete", "allow", f"{self.port}/tcp"],
                    ["ufw", "delete", "allow", f"{pasv_min}:{pasv_max}/tcp"]]
        elif fw == "iptables":
            cmds = [["iptables", "-D", "INPUT", "-p", "tcp", "--dport", self.port, "-j", "ACCEPT"],
                    ["iptables", "-D", "INPUT", "-p", "tcp", "--dport", f"{pasv_min}:{pasv_max}", "-j", "ACCEPT"]]
        else:
            return MutationResult(True, "No active firewall detected", applied=0)
        for cmd in cmds:
            # a missing rule is not an error
            self.run(cmd)
        return MutationResult.success(f"Firewall ports closed ({fw})", applied=len(cmds))

    def firewall_status(self) -> List[str]:
        pasv_min, pasv_max = self.passive_ports()
        lines = [f"FTP Port:      {self.port}/tcp", f"Passive Ports: {pasv_min}:{pasv_max}/tcp", ""]
        fw = self.firewall()
        if fw == "ufw":
            lines.append("Firewall: ufw (active)")
            rules = [l for l in self.run(["ufw", "status"]).stdout.splitlines()
                     if re.search(rf"({re.escape(self.port)}|4\d{{4}})", l)]
            lines += [f"  {r}" for r in rules] or ["  No FTP rules found - run 'open-firewall'"]
        elif fw == "iptables":
            lines.append("Firewall: iptables (active)")
            out = self.run(["iptables", "-L", "INPUT", "-n", "--line-numbers"]).stdout
            lines += [f"  {l}" for l in out.splitlines() if f"dpt:{self.port}" in l or "dpts:" in l]
        else:
            lines += ["Firewall: Not detected/inactive", "Ports should be accessible"]
        return lines

    def firewall_allows_port(self) -> bool:
        out = self.run(["ufw", "status"]).stdout
        return re.search(rf"{re.escape(self.port)}/tcp.*ALLOW", out) is not None

    # --- Logs and checks ---

    def logs(self, lines: Optional[int] = None) -> List[str]:
        lines = lines or self.cfg.log_lines
        if find_tool("journalctl"):
            proc = self.run(["journalctl", "-u", self.cfg.service, "--no-pager", "-n", str(lines)])
            if proc.returncode == 0:
                return proc.stdout.splitlines()
        log_file = Path(self.cfg.log_file)
        if log_file.is_file():
            return log_file.read_text(errors="replace").splitlines()[-lines:]
        return ["No logs available"]

    def test_connection(self, timeout: float = 5.0) -> List[CheckResult]:
        """Connect, log in anonymously and, with uploads enabled, upload a file."""
        results = []
        port = int(self.port)
        ftp = ftplib.FTP()
        try:
            banner = ftp.connect("localhost", port, timeout=timeout)
            results.append(CheckResult("Basic connection", banner.startswith("220"), banner))
            resp = ftp.login("anonymous", "test@test.com")
            results.append(CheckResult("Anonymous login", resp.startswith("230"), resp))
            if self.config.get("anon_upload_enable", "NO") == "YES":
                name = f"test_upload_{os.getpid()}.txt"
                payload = f"FTP upload test {datetime.datetime.now()}\n".encode()
                ftp.storbinary(f"STOR uploads/{name}", io.BytesIO(payload))
                uploaded = Path(self.root) / "uploads" / name
                ok = uploaded.is_file()
                results.append(CheckResult("Upload test", ok, "" if ok else "file not created"))
                if ok:
                    uploaded.unlink()
            else:
                results.append(CheckResult("Upload test", True, "skipped (uploads disabled)"))
            ftp.quit()
        except (OSError, ftplib.Error, EOFError) as e:
            logger.warning(f"FTP connection test failed: {e}")
            stage = ["Basic connection", "Anonymous login", "Upload test"][min(len(results), 2)]
            results.append(CheckResult(stage, False, str(e)))
        finally:
            ftp.close()
        return results

    def _port_listening(self) -> bool:
        proc = self.run(["ss", "-tln"])
        return proc.returncode == 0 and f":{self.port} " in proc.stdout

    def diagnose(self) -> List[CheckResult]:
        checks = []
        installed = self.is_installed()
        checks.append(CheckResult("Installation", installed,
                                  "vsftpd is installed" if installed else "vsftpd is NOT installed"))
        running = self.is_running()
        checks.append(CheckResult("Service Status", running,
                                  "vsftpd is running" if running else "vsftpd is NOT running"))

        if self.config.exists():
            anon = self.config.get("anonymous_enable", "NO")
            checks.append(CheckResult("Configuration", True,
                                      f"{self.config.path} (anonymous access: {anon})"))
        else:
            checks.append(CheckResult("Configuration", False, "Config file missing"))

        root = Path(self.root)
        if root.is_dir():
            checks.append(CheckResult("FTP Root Directory", True,
                                      f"{root} (permissions {oct(root.stat().st_mode & 0o777)[2:]})"))
        else:
            checks.append(CheckResult("FTP Root Directory", False, f"{root} does NOT exist"))

        uploads = root / "uploads"
        if self.config.get("anon_upload_enable", "NO") != "YES":
            checks.append(CheckResult("Uploads Directory", True, "Uploads disabled (read-only mode)"))
        elif not uploads.is_dir():
            checks.append(CheckResult("Uploads Directory", False, "Uploads dir missing (run enable-uploads)"))
        else:
            perms = oct(uploads.stat().st_mode & 0o777)[2:]
            checks.append(CheckResult("Uploads Directory", perms == "777", f"{uploads} (permissions {perms}, need 777)"))

        pasv_min, pasv_max = self.passive_ports()
        pasv_addr = self.config.get("pasv_address", "")
        if self.config.get("pasv_enable", "NO") != "YES":
            checks.append(CheckResult("Passive Mode", False, "disabled (may cause issues)"))
        elif not pasv_addr:
            checks.append(CheckResult("Passive Mode", False, "pasv_address not set"))
        else:
            checks.append(CheckResult("Passive Mode", True, f"ports {pasv_min}-{pasv_max}, address {pasv_addr}"))

        if self._port_listening():
            checks.append(CheckResult("Port Status", True, f"Listening on port {self.port}"))
        elif running:
            checks.append(CheckResult("Port Status", True, f"Port {self.port} status unclear"))
        else:
            checks.append(CheckResult("Port Status", False, "Not listening (server stopped)"))

        fw = self.firewall()
        if fw == "ufw":
            allowed = self.firewall_allows_port()
            checks.append(CheckResult("Firewall", allowed,
                                      "ufw: FTP port allowed" if allowed else "ufw: FTP port may be blocked"))
        elif fw == "iptables":
            checks.append(CheckResult("Firewall", True, "iptables active, check rules manually"))
        else:
            checks.append(CheckResult("Firewall", True, "No firewall detected"))
        return checks
