"""
External build toolchain wrapper.

This module extracts commit archives and runs the project's package
install and build task as child processes. Outcomes are returned as
StageResult values; a failing toolchain is never an exception.
"""

import asyncio
import io
import logging
import zipfile
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)


@dataclass
class StageResult:
    """Outcome of one build pipeline stage."""

    success: bool
    output: str = ""


class Toolchain:
    """
    Runs package install and build commands inside an extracted project.
    """

    def __init__(
        self,
        install_command: list[str] | None = None,
        build_command: list[str] | None = None,
    ):
        """
        Initialize the toolchain.

        Args:
            install_command: Package install command, run in the project directory
            build_command: Build task command, run in the project directory
        """
        self.install_command = install_command or ["npm", "install"]
        self.build_command = build_command or ["npx", "gulp", "all"]

    def extract_archive(self, archive: bytes, dest: Path) -> None:
        """
        Extract a zip archive into a directory.

        Raises:
            zipfile.BadZipFile: If the archive is not a zip file
        """
        dest.mkdir(parents=True, exist_ok=True)
        with zipfile.ZipFile(io.BytesIO(archive)) as zf:
            zf.extractall(dest)
        logger.debug(f"Extracted archive to {dest}")

    async def run_package_install(
        self, project_dir: Path, log: logging.LoggerAdapter | logging.Logger
    ) -> StageResult:
        return await self._run(self.install_command, project_dir, log)

    async def run_build_task(
        self, project_dir: Path, log: logging.LoggerAdapter | logging.Logger
    ) -> StageResult:
        return await self._run(self.build_command, project_dir, log)

    async def _run(
        self,
        command: list[str],
        cwd: Path,
        log: logging.LoggerAdapter | logging.Logger,
    ) -> StageResult:
        """
        Run a command, forwarding its combined output to ``log`` line by line.

        Returns:
            StageResult with success=True only for exit code 0
        """
        log.info(f"Running {' '.join(command)} in {cwd}")
        output_lines = []
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                cwd=str(cwd),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )

            # Assert stdout is available (we specified PIPE)
            assert process.stdout is not None, (
                "stdout should be available when PIPE is specified"
            )

            while True:
                line = await process.stdout.readline()
                if not line:
                    break
                text = line.decode(errors="replace")
                output_lines.append(text)
                log.info(text.rstrip())

            await process.wait()
        except OSError as e:
            # Missing executable or unusable working directory
            log.error(f"Failed to run {command[0]}: {e}")
            output_lines.append(f"{e}\n")
            return StageResult(success=False, output="".join(output_lines))

        success = process.returncode == 0
        if not success:
            log.warning(f"{command[0]} exited with code {process.returncode}")
        return StageResult(success=success, output="".join(output_lines))
