import sys
import os
from pathlib import Path

# Ensure project root is on sys.path for `import debugger_chat.*`
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# Default: keep every collaborator local unless a test opts in
os.environ.setdefault("IDENTITY_PROVIDER", "static")
os.environ.setdefault("INFERENCE_PROVIDER", "mock")
os.environ.setdefault("TELEMETRY_PROVIDER", "mock")
os.environ.setdefault("POLLER_ENABLED", "0")
os.environ.setdefault("AWS_REGION", "us-east-1")
os.environ.setdefault("AWS_ACCESS_KEY_ID", "testing")
os.environ.setdefault("AWS_SECRET_ACCESS_KEY", "testing")
