import os

os.environ.setdefault("ENVIRONMENT", "testing")
