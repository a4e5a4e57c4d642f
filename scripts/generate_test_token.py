#!/usr/bin/env python3
"""Generate JWT tokens for manual API testing, one per role."""
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from src.api.deps import issue_smoke_token
from src.core.auth import Role

user_id = sys.argv[1] if len(sys.argv) > 1 else "smoke-test"

for role in Role:
    token = issue_smoke_token(f"{user_id}-{role.value}", role=role)
    print(f"{role.value.title()} Token:\n{token}\n")
