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

"""
Command line entry point.

Usage:
    shodan start --github-access-token TOKEN --storage-url sqlite:///shodan.db
"""

import argparse
import asyncio
import logging
import signal
import sys
from typing import List

from shodan.config import ConfigError, ShodanConfig, load_config
from shodan.controllers.bump import new_bump_controller
from shodan.controllers.bump_pod import new_bump_pod_controller
from shodan.controllers.bump_pod_state import new_bump_pod_state_controller
from shodan.controllers.factory import Controller, EventRecorder
from shodan.controllers.notification import new_notification_controller
from shodan.controllers.report import new_report_controller
from shodan.github.client import HttpxGitHubClient
from shodan.storage.base import Storage
from shodan.storage.informers import StorageInformer
from shodan.storage.sql import SQLStorage, StorageOpenError
from shodan.workunits.executor import LocalWorkUnitExecutor, shell_runner

logger = logging.getLogger(__name__)


def build_controllers(
    config: ShodanConfig,
    storage: Storage,
    informer: StorageInformer,
    github: HttpxGitHubClient,
    executor: LocalWorkUnitExecutor,
) -> List[Controller]:
    recorder = EventRecorder("shodan")
    informers = [informer]
    return [
        new_notification_controller(config, storage, github, informers, recorder),
        new_bump_controller(config, storage, github, informers, recorder),
        new_bump_pod_controller(config, storage, executor, informers, recorder),
        new_bump_pod_state_controller(config, storage, executor, informers, recorder),
        new_report_controller(config, storage, github, informers, recorder),
    ]


async def run_controllers(controllers: List[Controller]) -> None:
    """Run every controller until SIGINT or SIGTERM is received"""
    loop = asyncio.get_running_loop()
    tasks = [asyncio.create_task(c.run(1), name=c.name) for c in controllers]

    def _stop(signame: str) -> None:
        logger.info(f"Received {signame}, stopping controllers")
        for task in tasks:
            task.cancel()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _stop, sig.name)
    try:
        results = await asyncio.gather(*tasks, return_exceptions=True)
    finally:
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(sig)
    for controller, result in zip(controllers, results):
        if isinstance(result, Exception):
            logger.error(f"{controller.name} exited with error: {result}")


async def start(config: ShodanConfig) -> None:
    informer = StorageInformer("jobs")
    storage = SQLStorage(config.storage_url, informers=[informer])
    github = HttpxGitHubClient(
        config.github_access_token,
        base_url=config.github_api_url,
        timeout=config.github_timeout,
    )
    executor = LocalWorkUnitExecutor(shell_runner, background=True)
    try:
        await run_controllers(build_controllers(config, storage, informer, github, executor))
    finally:
        await github.aclose()
        storage.close()
    logger.info("All controllers stopped")


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(prog="shodan", description="GitHub bot bumping Go dependencies")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    start_parser = subparsers.add_parser("start", help="Start the controllers")
    start_parser.add_argument("--github-access-token", help="GitHub access token (env GITHUB_TOKEN)")
    start_parser.add_argument("--github-api-url", help="GitHub API base URL")
    start_parser.add_argument("--storage-url", help="SQLAlchemy URL of the job storage (env SHODAN_STORAGE_URL)")
    start_parser.add_argument("--fork-name", help="GitHub user owning the forks bump pull requests come from")
    start_parser.add_argument("--work-unit-image", help="Image used to run bump work units")
    start_parser.add_argument("--log-level", help="Logging level, e.g. DEBUG or INFO")

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    try:
        config = load_config(
            {
                "github_access_token": args.github_access_token,
                "github_api_url": args.github_api_url,
                "storage_url": args.storage_url,
                "fork_name": args.fork_name,
                "work_unit_image": args.work_unit_image,
                "log_level": args.log_level,
            }
        )
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    logging.basicConfig(
        level=config.log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        config.validate_for_start()
        asyncio.run(start(config))
    except (ConfigError, StorageOpenError) as e:
        logger.error(f"Unable to start: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
