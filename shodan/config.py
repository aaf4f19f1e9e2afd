# Copyright 2025 ApeCloud, Inc.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

import os
from typing import Any, Dict, Mapping, Optional

import dotenv
from pydantic import BaseModel, Field, ValidationError


class ConfigError(Exception):
    """Invalid or incomplete configuration, fatal at startup"""


class ShodanConfig(BaseModel):
    """Options shared by every controller, built once at startup and passed explicitly"""

    github_access_token: str = ""
    github_api_url: str = "https://api.github.com"
    # Deadline in seconds for a single GitHub lookup
    github_timeout: float = Field(30.0, gt=0)
    # Deadline in seconds for a single work unit executor call
    executor_timeout: float = Field(30.0, gt=0)

    storage_url: str = "sqlite:///shodan.db"

    fork_name: str = "shodan-bot"
    work_unit_image: str = "quay.io/mfojtik/shodan:bumpdeps"
    work_unit_namespace: str = "shodan"

    notification_resync: float = Field(30.0, gt=0)
    bump_resync: float = Field(60.0, gt=0)
    bump_pod_resync: float = Field(10.0, gt=0)
    bump_pod_state_resync: float = Field(10.0, gt=0)
    report_resync: float = Field(30.0, gt=0)

    log_level: str = "INFO"

    def validate_for_start(self) -> None:
        if not self.github_access_token:
            raise ConfigError("provide Github Access Token (either by --github-access-token or GITHUB_TOKEN env var)")
        if not self.storage_url:
            raise ConfigError("storage URL must be specified using --storage-url or SHODAN_STORAGE_URL")


# Environment variable -> config field
ENV_VARS = {
    "GITHUB_TOKEN": "github_access_token",
    "SHODAN_GITHUB_API_URL": "github_api_url",
    "SHODAN_GITHUB_TIMEOUT": "github_timeout",
    "SHODAN_EXECUTOR_TIMEOUT": "executor_timeout",
    "SHODAN_STORAGE_URL": "storage_url",
    "SHODAN_FORK_NAME": "fork_name",
    "SHODAN_WORK_UNIT_IMAGE": "work_unit_image",
    "SHODAN_WORK_UNIT_NAMESPACE": "work_unit_namespace",
    "SHODAN_LOG_LEVEL": "log_level",
}


def load_config(
    overrides: Optional[Dict[str, Any]] = None,
    environ: Optional[Mapping[str, str]] = None,
    dotenv_path: Optional[str] = ".env",
) -> ShodanConfig:
    """
    Build the configuration from environment variables and explicit overrides.

    Overrides with a None value are ignored so unset command line flags fall back to the
    environment.
    """
    if environ is None:
        if dotenv_path:
            dotenv.load_dotenv(dotenv_path)
        environ = os.environ

    values: Dict[str, Any] = {}
    for env_name, field in ENV_VARS.items():
        if environ.get(env_name):
            values[field] = environ[env_name]
    for field, value in (overrides or {}).items():
        if value is not None:
            values[field] = value

    try:
        return ShodanConfig(**values)
    except ValidationError as e:
        raise ConfigError(f"invalid configuration: {e}") from e
