# d1_tenancy/cli/config.py
import os
from dotenv import load_dotenv
from pathlib import Path

# This file lives at <project>/d1_tenancy/cli/config.py
project_root = Path(__file__).parent.parent.parent.resolve()

# Values in .env take precedence over the shell environment for the CLI
load_dotenv(dotenv_path=project_root / '.env', override=True)

# Where the d1_tenancy admin API is served
D1_TENANCY_CLI_API_BASE_URL = os.getenv("D1_TENANCY_CLI_API_BASE_URL", "http://127.0.0.1:8000")

# Sent as X-Admin-API-Key on every admin call
D1_TENANCY_CLI_ADMIN_API_KEY = os.getenv("ADMIN_API_KEY")

# Seconds to wait for the admin API; migrations across many tenants can be slow
D1_TENANCY_CLI_TIMEOUT = float(os.getenv("D1_TENANCY_CLI_TIMEOUT", "120"))
