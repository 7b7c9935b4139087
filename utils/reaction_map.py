import asyncio
import json
import logging
import os

import bot_config

logger = logging.getLogger("ReactionMap")


class PublishError(Exception):
    """The map was saved locally but git could not commit or push it."""


class ReactionMap:
    def __init__(self, path: str, git_author=bot_config.GIT_AUTHOR,
                 remote=bot_config.GIT_REMOTE, branch=bot_config.GIT_BRANCH):
        self.path = path
        self.git_author = git_author
        self.remote = remote
        self.branch = branch
        self._lock = asyncio.Lock()
        self.mapping = self.load()

    def load(self):
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Error loading {self.path}: {e}")
            return {}

        if not isinstance(data, dict):
            logger.error(f"{self.path} does not contain a JSON object, ignoring it")
            return {}
        return data

    def to_json(self, mapping=None):
        return json.dumps(self.mapping if mapping is None else mapping, indent=2, ensure_ascii=False)

    def save(self, mapping):
        tmp_path = f"{self.path}.tmp"
        with open(tmp_path, 'w', encoding='utf-8') as f:
            f.write(self.to_json(mapping))
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, self.path)

    def matches(self, text):
        """Yields the emoji for every keyword contained in text."""
        lowered = (text or "").lower()
        for keyword, emoji in self.mapping.items():
            if keyword and keyword.lower() in lowered:
                yield emoji

    async def update(self, keyword, emoji):
        """
        Sets keyword -> emoji, rewrites the file and publishes it with git.

        OSError from the write propagates and leaves the commit untouched.
        PublishError means the file was saved but the git step failed.
        """
        async with self._lock:
            mapping = self.load()
            mapping[keyword] = emoji
            self.save(mapping)
            self.mapping = mapping
            logger.info(f"Saved {keyword}: {emoji} to {self.path}")
            await self.publish(keyword, emoji)

    async def publish(self, keyword, emoji):
        filename = os.path.basename(self.path)
        await self._git("add", self.path)
        await self._git(
            "commit",
            "-m", f"Update {filename}: {keyword}: {emoji}",
            f"--author={self.git_author}",
        )
        await self._git("push", self.remote, self.branch)
        logger.info(f"Pushed changes to remote: {keyword}: {emoji}")

    async def _git(self, *args):
        repo_dir = os.path.dirname(os.path.abspath(self.path))
        try:
            process = await asyncio.create_subprocess_exec(
                "git", *args,
                cwd=repo_dir,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise PublishError(f"Could not run git {args[0]}: {e}") from e

        stdout, stderr = await process.communicate()
        if process.returncode != 0:
            output = (stderr or stdout or b"").decode(errors='ignore').strip()
            logger.error(f"git {args[0]} failed ({process.returncode}): {output}")
            raise PublishError(f"git {args[0]} exited with {process.returncode}")
        return stdout
