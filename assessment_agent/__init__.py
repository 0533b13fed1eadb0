from __future__ import annotations

# Load `.env` before anything reads REDIS_URL so `python -m
# assessment_agent.workers.run_worker` works in dev without manual exports.
from assessment_agent.utils.env import load_project_dotenv

load_project_dotenv()
