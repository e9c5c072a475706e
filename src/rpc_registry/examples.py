"""Example procedures.

Demonstrates:
- A parameterless procedure with an output schema
- Optional structured parameters (pagination)
- A required, constrained parameter and procedure-level errors
- Tool metadata declared with @mcp_tool, including OAuth scopes

Backed by in-memory sample content; in production these would query a
content store.
"""

import re
from typing import Any, Optional

from shared.logging import get_logger
from shared.models import ExecutionContext, ParameterSpec
from rpc_registry.base import Procedure, ProcedureError, mcp_tool
from rpc_registry.registry import MethodRegistry

logger = get_logger(__name__)


# Sample data for mock implementation
MOCK_CONTENT_TYPES = {
    "article": {"label": "Article"},
    "page": {"label": "Basic page"},
}

MOCK_NODES: dict[int, dict[str, Any]] = {
    1: {
        "nid": 1,
        "type": "article",
        "title": "Getting Started",
        "body": "<p>Welcome to the site.</p><p>This article explains the basics.</p>",
        "created": 1704067200,
        "status": 1,
    },
    2: {
        "nid": 2,
        "type": "article",
        "title": "Release Notes",
        "body": "<p>Version 2 ships <strong>faster</strong> tool discovery.</p>",
        "created": 1706745600,
        "status": 1,
    },
    3: {
        "nid": 3,
        "type": "page",
        "title": "About",
        "body": "<p>About us.</p>",
        "created": 1701388800,
        "status": 1,
    },
    4: {
        "nid": 4,
        "type": "article",
        "title": "Unpublished Draft",
        "body": "<p>Not ready yet.</p>",
        "created": 1709251200,
        "status": 0,
    },
}

PARAGRAPH_BREAK = re.compile(r"</p>\s*<p[^>]*>")
PARAGRAPH_TAG = re.compile(r"</?p[^>]*>")
ANY_TAG = re.compile(r"<[^>]+>")


def convert_to_markdown(title: str, body: Optional[str]) -> str:
    """
    Render an article as markdown.

    Paragraph boundaries become blank lines, all other markup is stripped.
    """
    body = body or ""
    body = PARAGRAPH_BREAK.sub("\n\n", body)
    body = PARAGRAPH_TAG.sub("", body)
    body = ANY_TAG.sub("", body)
    return f"# {title}\n\n{body.strip()}"


@mcp_tool(
    title="List Content Types",
    annotations={"category": "discovery"}
)
class ListContentTypes(Procedure):
    """Lists all available content types."""

    method_id = "examples.contentTypes.list"
    usage = "Lists all available content types"
    access = ("access content",)
    params: dict[str, ParameterSpec] = {}

    def execute(self, params: dict[str, Any], context: ExecutionContext) -> list[dict[str, str]]:
        return [
            {"id": type_id, "label": info["label"]}
            for type_id, info in MOCK_CONTENT_TYPES.items()
        ]

    @classmethod
    def output_schema(cls) -> dict[str, Any]:
        return {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "id": {
                        "type": "string",
                        "description": "Content type machine name",
                    },
                    "label": {
                        "type": "string",
                        "description": "Content type human-readable label",
                    },
                },
                "required": ["id", "label"],
            },
        }


@mcp_tool(
    title="List Articles",
    annotations={"category": "content", "supports_pagination": True}
)
class ListArticles(Procedure):
    """Lists published articles, newest first."""

    method_id = "examples.articles.list"
    usage = "Lists article nodes with optional pagination"
    access = ("access content",)
    params = {
        "page": ParameterSpec(
            schema={
                "type": "object",
                "properties": {
                    "offset": {"type": "integer", "minimum": 0},
                    "limit": {"type": "integer", "minimum": 1},
                },
                "additionalProperties": False,
            },
            description="Pagination parameters (offset and limit)",
            required=False,
        ),
    }

    def execute(self, params: dict[str, Any], context: ExecutionContext) -> list[dict[str, Any]]:
        articles = sorted(
            (
                node for node in MOCK_NODES.values()
                if node["type"] == "article" and node["status"] == 1
            ),
            key=lambda node: node["created"],
            reverse=True,
        )

        page = params.get("page")
        if page:
            offset = page.get("offset", 0)
            limit = page.get("limit")
            end = offset + limit if limit is not None else None
            articles = articles[offset:end]

        return [
            {"nid": node["nid"], "title": node["title"], "created": node["created"]}
            for node in articles
        ]

    @classmethod
    def output_schema(cls) -> dict[str, Any]:
        return {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "nid": {"type": "integer", "description": "Node ID"},
                    "title": {"type": "string", "description": "Article title"},
                    "created": {"type": "integer", "description": "Creation timestamp"},
                },
                "required": ["nid", "title", "created"],
            },
        }


@mcp_tool(
    title="Get Article as Markdown",
    annotations={
        "category": "content",
        "returns": "markdown",
        "auth": {
            "scopes": ["content:read"],
            "description": "Reading article bodies requires content read access",
        },
    }
)
class ArticleToMarkdown(Procedure):
    """Retrieves an article node and formats it as markdown."""

    method_id = "examples.article.toMarkdown"
    usage = "Retrieves an article node and formats it as markdown"
    access = ("access content",)
    params = {
        "nid": ParameterSpec(
            schema={"type": "integer", "minimum": 1},
            description="The node ID of the article",
            required=True,
        ),
    }

    def execute(self, params: dict[str, Any], context: ExecutionContext) -> str:
        nid = params["nid"]
        node = MOCK_NODES.get(nid)

        if node is None:
            raise ProcedureError.invalid_params(f"Node with ID {nid} not found")
        if node["type"] != "article":
            raise ProcedureError.invalid_params(f"Node {nid} is not an article")
        if node["status"] != 1:
            raise ProcedureError.invalid_params(f"Access denied to node {nid}")

        return convert_to_markdown(node["title"], node["body"])

    @classmethod
    def output_schema(cls) -> dict[str, Any]:
        return {
            "type": "string",
            "description": "Article content formatted as markdown",
        }


EXAMPLE_PROCEDURES: list[type[Procedure]] = [
    ListContentTypes,
    ListArticles,
    ArticleToMarkdown,
]


def register_examples(registry: MethodRegistry) -> None:
    """Register every example procedure."""
    registry.register_many(EXAMPLE_PROCEDURES)
    logger.info("Example procedures registered", count=len(EXAMPLE_PROCEDURES))
