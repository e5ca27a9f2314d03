import os
import tempfile

# keep config and log files out of the user's home while testing
_tmp = tempfile.mkdtemp(prefix="servctl-tests-")
os.environ.setdefault("SERVCTL_CONFIG_DIR", os.path.join(_tmp, "config"))
os.environ.setdefault("XDG_DATA_HOME", os.path.join(_tmp, "data"))
