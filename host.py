import os
import shlex
import shutil
import subprocess
import logging
import time
from typing import Optional, Union
from common import SetupError
from logger import logger


class CommandError(SetupError):
    def __init__(self, cmd: str, result: 'Result'):
        super().__init__(f"'{cmd}' failed with {result}")
        self.cmd = cmd
        self.result = result


class Result:
    def __init__(self, out: str, err: str, returncode: int):
        self.out = out
        self.err = err
        self.returncode = returncode

    def __str__(self) -> str:
        return f"(returncode: {self.returncode}, error: {self.err.strip()})"

    def success(self) -> bool:
        return self.returncode == 0


class LocalHost:
    """Runs commands (oc, roxctl, uname) on the machine the tool is started from."""

    def run(
        self,
        cmd: Union[str, list[str]],
        log_level: int = logging.DEBUG,
        env: Optional[dict[str, str]] = None,
        stdin: Optional[str] = None,
        quiet: bool = False,
    ) -> Result:
        args = shlex.split(cmd) if isinstance(cmd, str) else list(cmd)
        printable = cmd if isinstance(cmd, str) else shlex.join(cmd)
        if not quiet:
            logger.log(log_level, f"running command {printable}")

        if env is None:
            env = os.environ.copy()
        try:
            proc = subprocess.run(args, input=stdin, capture_output=True, text=True, env=env)
        except FileNotFoundError as e:
            ret = Result("", str(e), 127)
        else:
            ret = Result(proc.stdout, proc.stderr, proc.returncode)

        if not quiet:
            logger.log(log_level, ret)
        return ret

    def run_or_die(self, cmd: Union[str, list[str]], retry: int = 0, stdin: Optional[str] = None) -> Result:
        printable = cmd if isinstance(cmd, str) else shlex.join(cmd)
        for attempt in range(retry + 1):
            ret = self.run(cmd, logging.DEBUG, stdin=stdin)
            if ret.success():
                return ret
            if attempt < retry:
                logger.info(f"Retrying '{printable}' after failure: {ret}")
                time.sleep(3)
        raise CommandError(printable, ret)

    def which(self, binary: str) -> Optional[str]:
        return shutil.which(binary)

    def arch(self) -> str:
        return os.uname().machine

    def system(self) -> str:
        return os.uname().sysname.lower()
