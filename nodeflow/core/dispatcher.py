"""Per-node-type actions.

Every handler returns a NodeOutcome. Capability failures (AI completion, file
extraction, outbound HTTP) come back as `err` outcomes carrying a degraded
envelope; only unexpected errors raise.
"""

import json
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional

from .context import ExecutionContext
from .exceptions import CapabilityError, ConfigurationError
from .logging import get_logger
from .templates import TemplateResolver, primary_value, stringify
from .conditions import evaluate_condition
from ..models.core import (
    ApiNodeConfig,
    FileNodeConfig,
    InputNodeConfig,
    LogicNodeConfig,
    Node,
    NodeOutcome,
    NodeType,
    OutcomeKind,
    OutputNodeConfig,
    PromptNodeConfig,
    first_set,
)
from ..services.completion import CompletionClient
from ..services.file_extraction import FileExtractor, LocalFileExtractor
from ..services.http_client import ApiCaller, SimulatedApiCaller


logger = get_logger(__name__)

PREVIEW_LENGTH = 200


def _timestamp() -> str:
    return datetime.utcnow().isoformat() + "Z"


def _preview(text: str) -> str:
    return text[:PREVIEW_LENGTH] + ("..." if len(text) > PREVIEW_LENGTH else "")


def collect_files(input_data: Any) -> List[Any]:
    """File references handed over by a predecessor."""
    if isinstance(input_data, list):
        return list(input_data)
    if not isinstance(input_data, Mapping):
        return []
    for key in ("data", "files"):
        value = input_data.get(key)
        if isinstance(value, list) and value:
            return list(value)
    # Combined input from several predecessors.
    files: List[Any] = []
    for key, value in input_data.items():
        if key.startswith("input_"):
            continue
        if isinstance(value, Mapping):
            for inner_key in ("data", "files"):
                inner = value.get(inner_key)
                if isinstance(inner, list) and inner:
                    files.extend(inner)
                    break
    return files


def format_output(value: Any, output_format: str) -> str:
    """Render the output node's effective input. `csv` is lossy."""
    if output_format == "json":
        if isinstance(value, str):
            return value
        return json.dumps(value, indent=2, ensure_ascii=False, default=str)
    if output_format == "text":
        return stringify(value)
    if output_format == "csv":
        if isinstance(value, (dict, list)):
            flat = json.dumps(value, separators=(",", ":"), ensure_ascii=False, default=str)
            return flat.replace("{", "").replace("}", "").replace('"', "").replace(":", ",")
        return stringify(value)
    return value


class NodeDispatcher:
    """Maps each NodeType to its handler. Stateless between runs."""

    def __init__(
        self,
        completion_client: CompletionClient,
        file_extractor: Optional[FileExtractor] = None,
        api_caller: Optional[ApiCaller] = None,
        resolver: Optional[TemplateResolver] = None,
        default_model: str = "gemini-1.5-flash"
    ):
        self.completion_client = completion_client
        self.file_extractor = file_extractor or LocalFileExtractor()
        self.api_caller = api_caller or SimulatedApiCaller()
        self.resolver = resolver or TemplateResolver()
        self.default_model = default_model

        self._handlers: Dict[NodeType, Callable[..., NodeOutcome]] = {
            NodeType.INPUT: self._execute_input,
            NodeType.PROMPT: self._execute_prompt,
            NodeType.API: self._execute_api,
            NodeType.LOGIC: self._execute_logic,
            NodeType.DATA_ENTRY: self._execute_data_entry,
            NodeType.FILE_TO_TEXT: self._execute_file_to_text,
            NodeType.FILE_UPLOAD: self._execute_file_upload,
            NodeType.OUTPUT: self._execute_output,
        }
        missing = set(NodeType) - set(self._handlers)
        if missing:
            raise ConfigurationError(f"No handler for node types: {sorted(t.value for t in missing)}")

    def execute(
        self,
        node: Node,
        context: ExecutionContext,
        input_data: Any,
        initial_input: Any = None,
        has_incoming: bool = False
    ) -> NodeOutcome:
        node_type = node.node_type
        if node_type is None:
            logger.warning(f"Unknown node type '{node.type}' for node {node.id}")
            return NodeOutcome.success({
                "message": "Unknown node type",
                "node_type": node.type,
                "input_data": input_data,
                "timestamp": _timestamp(),
            })

        config, invalid_fields = node.lenient_config()
        outcome = self._handlers[node_type](
            node, config, context,
            input_data=input_data,
            initial_input=initial_input,
            has_incoming=has_incoming
        )
        if not invalid_fields or not outcome.ok:
            return outcome

        message = f"Invalid configuration values replaced by defaults: {', '.join(invalid_fields)}"
        logger.warning(f"Node {node.id} ({node.type}): {message}")
        return NodeOutcome.failure(OutcomeKind.CONFIGURATION, message, outcome.output)

    def _execute_input(self, node: Node, config: InputNodeConfig, context: ExecutionContext,
                       input_data: Any, initial_input: Any, has_incoming: bool) -> NodeOutcome:
        if config.input_type == "text":
            configured = first_set(config.text_value, config.data, config.initial_value, config.description)
            placeholder = "Workflow started"
        elif config.input_type == "file":
            configured = first_set(config.processed_text, config.data, config.description)
            placeholder = "No file uploaded"
        else:
            configured = first_set(
                config.processed_text, config.data, config.text_value,
                config.initial_value, config.description
            )
            placeholder = "Workflow started"

        if configured is not None:
            value, source, message = configured, "config", "Configured input value"
        elif has_incoming:
            value, source, message = primary_value(input_data), "upstream", "Input received from connected node"
        elif initial_input:
            value, source, message = initial_input, "initialInput", "Initial input received"
        else:
            value, source, message = placeholder, "placeholder", "No input provided"

        return NodeOutcome.success({
            "data": value,
            "output": value,
            "inputType": config.input_type,
            "source": source,
            "hasIncomingConnection": has_incoming,
            "message": message,
            "timestamp": _timestamp(),
        })

    def _execute_prompt(self, node: Node, config: PromptNodeConfig, context: ExecutionContext,
                        input_data: Any, **_: Any) -> NodeOutcome:
        model = config.model or self.default_model
        prompt = self.resolver.resolve(config.prompt, context.scoped_variables(input_data))
        logger.debug(f"Prompt node {node.id} resolved prompt: {prompt}")

        envelope: Dict[str, Any] = {
            "prompt": prompt,
            "model": model,
            "input_data": input_data,
        }

        try:
            result = self.completion_client.complete(prompt, model)
        except Exception as e:
            message = str(e) or type(e).__name__
            text = f"Failed to call Gemini API: {message}"
            envelope.update(response=text, output=text, data=text, error=message, timestamp=_timestamp())
            logger.error(f"Completion call raised for node {node.id}: {message}")
            return NodeOutcome.failure(OutcomeKind.CAPABILITY, message, envelope)

        if not result.success:
            message = result.error or "Unknown error"
            text = f"Error from Gemini API: {message}"
            envelope.update(response=text, output=text, data=text, error=message, timestamp=_timestamp())
            return NodeOutcome.failure(OutcomeKind.CAPABILITY, message, envelope)

        envelope.update(response=result.text, output=result.text, data=result.text, timestamp=_timestamp())
        return NodeOutcome.success(envelope)

    def _execute_api(self, node: Node, config: ApiNodeConfig, context: ExecutionContext,
                     input_data: Any, **_: Any) -> NodeOutcome:
        variables = context.scoped_variables(input_data)
        url = self.resolver.resolve(config.url, variables)
        body = self.resolver.resolve(config.body, variables)

        try:
            envelope = dict(self.api_caller.call(url, config.method, body, input_data, headers=config.headers))
        except CapabilityError as e:
            return NodeOutcome.failure(OutcomeKind.CAPABILITY, e.message, {
                "status": 0,
                "data": None,
                "error": e.message,
                "url": url,
                "method": config.method,
                "body": body,
                "timestamp": _timestamp(),
            })

        envelope["timestamp"] = _timestamp()
        return NodeOutcome.success(envelope)

    def _execute_logic(self, node: Node, config: LogicNodeConfig, context: ExecutionContext,
                       input_data: Any, **_: Any) -> NodeOutcome:
        condition = self.resolver.resolve(config.condition, context.scoped_variables(input_data))
        result = evaluate_condition(condition, config.compare_value, config.operator)
        branch = "true" if result else "false"

        logger.info(
            f"Logic node {node.id}: {condition!r} {config.operator} {config.compare_value!r} -> {branch}"
        )

        return NodeOutcome.success({
            "condition": condition,
            "compareValue": config.compare_value,
            "operator": config.operator,
            "result": result,
            "branch": branch,
            "input_data": input_data,
            "timestamp": _timestamp(),
        })

    def _execute_data_entry(self, node: Node, config: FileNodeConfig, context: ExecutionContext,
                            **_: Any) -> NodeOutcome:
        files = config.files or config.uploaded_files
        if not files:
            return NodeOutcome.failure(OutcomeKind.CONFIGURATION, "No files uploaded", {
                "success": False,
                "error": "No files uploaded",
                "files": [],
                "timestamp": _timestamp(),
            })

        metadata = [self.file_extractor.describe(file) for file in files]
        return NodeOutcome.success({
            "success": True,
            "files": metadata,
            "fileCount": len(metadata),
            "totalSize": sum(item.get("size") or 0 for item in metadata),
            "data": list(files),
            "output": list(files),
            "timestamp": _timestamp(),
        })

    def _execute_file_to_text(self, node: Node, config: FileNodeConfig, context: ExecutionContext,
                              input_data: Any, **_: Any) -> NodeOutcome:
        files = collect_files(input_data) + list(config.files)
        if not files:
            return NodeOutcome.failure(OutcomeKind.CONFIGURATION, "No files received for text extraction", {
                "success": False,
                "error": "No files received for text extraction",
                "extractedText": "",
                "output": "",
                "timestamp": _timestamp(),
            })

        logger.info(f"fileToText node {node.id} processing {len(files)} file(s)")

        try:
            results = self.file_extractor.extract(files, config.extraction_method)
            text = self.file_extractor.combine(results, config.output_format)
        except Exception as e:
            message = f"File processing failed: {str(e) or type(e).__name__}"
            logger.error(f"fileToText node {node.id}: {message}")
            return NodeOutcome.failure(OutcomeKind.CAPABILITY, message, {
                "success": False,
                "error": message,
                "extractedText": "",
                "output": "",
                "timestamp": _timestamp(),
            })

        return NodeOutcome.success({
            "success": True,
            "extractedText": text,
            "data": text,
            "output": text,
            "extractionMethod": config.extraction_method,
            "outputFormat": config.output_format,
            "processedFiles": len(results),
            "successfulExtractions": sum(1 for result in results if result.success),
            "fileResults": [result.model_dump(by_alias=True) for result in results],
            "timestamp": _timestamp(),
        })

    def _execute_file_upload(self, node: Node, config: FileNodeConfig, context: ExecutionContext,
                             **_: Any) -> NodeOutcome:
        processed = first_set(config.processed_text, config.data)
        files = list(config.files)

        if processed is None and not files:
            message = "No files uploaded or processed text available"
            return NodeOutcome.failure(OutcomeKind.CONFIGURATION, message, {
                "success": False,
                "error": message,
                "files": [],
                "processedText": "",
                "data": "",
                "output": "",
                "timestamp": _timestamp(),
            })

        if processed is not None:
            text = processed
            successful = len(files)
        else:
            try:
                results = self.file_extractor.extract(files, config.extraction_method)
                text = self.file_extractor.combine(results, config.output_format)
            except Exception as e:
                message = f"File processing failed: {str(e) or type(e).__name__}"
                logger.error(f"fileUpload node {node.id}: {message}")
                return NodeOutcome.failure(OutcomeKind.CAPABILITY, message, {
                    "success": False,
                    "error": message,
                    "files": [],
                    "processedText": "",
                    "data": "",
                    "output": "",
                    "timestamp": _timestamp(),
                })
            successful = sum(1 for result in results if result.success)

        return NodeOutcome.success({
            "success": True,
            "files": [self.file_extractor.describe(file) for file in files],
            "processedText": text,
            "data": text,
            "output": text,
            "fileCount": len(files),
            "successfulExtractions": successful,
            "extractionMethod": config.extraction_method,
            "outputFormat": config.output_format,
            "uploadStatus": config.upload_status or "success",
            "timestamp": _timestamp(),
        })

    def _execute_output(self, node: Node, config: OutputNodeConfig, context: ExecutionContext,
                        input_data: Any, **_: Any) -> NodeOutcome:
        value = primary_value(input_data)
        formatted = format_output(value, config.format)

        return NodeOutcome.success({
            "format": config.format,
            "data": formatted,
            "preview": _preview(stringify(formatted)),
            "final_output": input_data,
            "all_results": context.outputs_snapshot(),
            "timestamp": _timestamp(),
        })
