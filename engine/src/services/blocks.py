"""
Block library - reusable command templates referenced by steps.
"""

import logging
from typing import Any, Dict, List, Literal, Optional

import yaml
from pydantic import BaseModel, ValidationError

from engine.src.errors import BlockNotFoundError, PipelineConfigError

logger = logging.getLogger(__name__)

class BlockParameter(BaseModel):
    name: str
    type: Literal["string", "number", "boolean", "select", "file", "directory"] = "string"
    description: str = ""
    required: bool = False
    default_value: Any = None
    options: Optional[List[str]] = None

class Block(BaseModel):
    id: str
    name: str
    description: str = ""
    category: Literal["build", "test", "deploy", "utility", "custom"] = "custom"
    version: str = "1.0.0"
    parameters: List[BlockParameter] = []
    command: str
    tags: List[str] = []

class CommandTemplate(BaseModel):
    template: str
    parameter_schema: List[BlockParameter] = []

    def defaults(self) -> Dict[str, Any]:
        """Default values declared by the parameter schema."""
        return {
            p.name: p.default_value
            for p in self.parameter_schema
            if p.default_value is not None
        }

    def required(self) -> List[str]:
        return [p.name for p in self.parameter_schema if p.required]

DEFAULT_BLOCKS = [
    Block(
        id="shell",
        name="Shell Command",
        description="Run an arbitrary shell command",
        category="utility",
        parameters=[
            BlockParameter(name="command", description="Command to run", required=True),
        ],
        command="${command}",
        tags=["shell"],
    ),
    Block(
        id="install-npm",
        name="Install NPM Dependencies",
        description="Install Node.js dependencies",
        category="build",
        parameters=[
            BlockParameter(
                name="packageManager", type="select", required=True,
                default_value="npm", options=["npm", "yarn", "pnpm"],
            ),
            BlockParameter(
                name="installCommand", type="select",
                default_value="install", options=["install", "ci"],
            ),
        ],
        command="${packageManager} ${installCommand}",
        tags=["node", "npm", "dependencies", "install"],
    ),
    Block(
        id="install-pip",
        name="Install Python Dependencies",
        description="Install Python dependencies using pip",
        category="build",
        parameters=[
            BlockParameter(
                name="requirementsFile", type="file",
                default_value="requirements.txt",
            ),
        ],
        command="pip install -r ${requirementsFile}",
        tags=["python", "pip", "dependencies", "install"],
    ),
    Block(
        id="run-script",
        name="Run Package Script",
        description="Run a script defined in package.json",
        category="build",
        parameters=[
            BlockParameter(name="packageManager", type="select", default_value="npm",
                           options=["npm", "yarn", "pnpm"]),
            BlockParameter(name="script", required=True, default_value="build"),
        ],
        command="${packageManager} run ${script}",
        tags=["node", "build"],
    ),
    Block(
        id="pytest",
        name="Run Pytest",
        description="Run the Python test suite",
        category="test",
        parameters=[
            BlockParameter(name="testPath", type="directory", default_value="tests"),
            BlockParameter(name="args", default_value=""),
        ],
        command="pytest ${testPath} ${args}",
        tags=["python", "test"],
    ),
    Block(
        id="docker-build",
        name="Docker Build",
        description="Build a Docker image",
        category="build",
        parameters=[
            BlockParameter(name="imageName", required=True),
            BlockParameter(name="tag", default_value="latest"),
            BlockParameter(name="dockerfile", type="file", default_value="Dockerfile"),
            BlockParameter(name="context", type="directory", default_value="."),
        ],
        command="docker build -t ${imageName}:${tag} -f ${dockerfile} ${context}",
        tags=["docker", "build"],
    ),
]

class BlockLibrary:
    """In-memory registry of blocks keyed by id."""

    def __init__(self, blocks: Optional[List[Block]] = None, include_defaults: bool = True):
        self._blocks: Dict[str, Block] = {}
        if include_defaults:
            for block in DEFAULT_BLOCKS:
                self.register(block)
        for block in blocks or []:
            self.register(block)

    def register(self, block: Block) -> None:
        if block.id in self._blocks:
            logger.info(f"Replacing block '{block.id}'")
        self._blocks[block.id] = block

    def get_block(self, block_id: str) -> Block:
        try:
            return self._blocks[block_id]
        except KeyError:
            raise BlockNotFoundError(f"Block '{block_id}' not found")

    def get_command_template(self, block_id: str) -> CommandTemplate:
        block = self.get_block(block_id)
        return CommandTemplate(template=block.command, parameter_schema=block.parameters)

    def list_blocks(self, category: Optional[str] = None) -> List[Block]:
        blocks = list(self._blocks.values())
        if category:
            blocks = [b for b in blocks if b.category == category]
        return blocks

    def load_yaml(self, content: str) -> int:
        """Register blocks from a YAML document with a top-level `blocks` list."""
        try:
            data = yaml.safe_load(content) or {}
        except yaml.YAMLError as e:
            raise PipelineConfigError(f"Invalid YAML: {e}")

        entries = data.get("blocks") if isinstance(data, dict) else None
        if not isinstance(entries, list):
            raise PipelineConfigError("Block file must have a 'blocks' list")

        for i, entry in enumerate(entries):
            try:
                self.register(Block.model_validate(entry))
            except ValidationError as e:
                raise PipelineConfigError(f"Block {i} is invalid: {e}")

        logger.info(f"Loaded {len(entries)} blocks")
        return len(entries)

    def load_file(self, path: str) -> int:
        with open(path, "r") as f:
            return self.load_yaml(f.read())
