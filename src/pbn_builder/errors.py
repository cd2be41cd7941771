class PBNError(Exception):
    """所有服務層錯誤的基底類別。"""


class DuplicateNameError(PBNError):
    pass


class LLMError(PBNError):
    pass


class LLMBadRequestError(LLMError):
    """OpenAI 回傳 400，屬於永久性錯誤，不重試。"""


class LLMTransientError(LLMError):
    """連線重置、429、502 等暫時性錯誤。"""


class RepoHostError(PBNError):
    pass


class DeployError(PBNError):
    pass


class GitCommandError(PBNError):
    def __init__(self, args: list[str], returncode: int, stderr: str):
        self.command = args
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(f"git {' '.join(args)} exited with {returncode}: {stderr.strip()}")


class ReadinessTimeout(PBNError):
    pass


class ProjectNotFoundError(PBNError):
    pass


class ProjectRunningError(PBNError):
    pass
