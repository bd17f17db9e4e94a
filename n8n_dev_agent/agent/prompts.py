"""System and corrective prompts for the workflow builder.

The node catalog below is a curated subset of n8n's built-in nodes. The
oracle may use nodes outside it; the catalog only anchors common type names
and versions.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from n8n_dev_agent.agent.classifier import ErrorAnalysis


@dataclass(frozen=True)
class NodeInfo:
    type: str
    display_name: str
    version: int
    category: str
    description: str
    resources: tuple[str, ...] = ()


NODE_CATALOG: tuple[NodeInfo, ...] = (
    # Triggers
    NodeInfo("n8n-nodes-base.manualTrigger", "Manual Trigger", 1, "trigger",
             "Starts the workflow when you click Execute"),
    NodeInfo("n8n-nodes-base.scheduleTrigger", "Schedule Trigger", 1, "trigger",
             "Runs the workflow on a schedule (interval or cron expression)"),
    NodeInfo("n8n-nodes-base.webhook", "Webhook", 2, "trigger",
             "Starts the workflow when an HTTP request hits its URL"),
    NodeInfo("n8n-nodes-base.formTrigger", "n8n Form Trigger", 2, "trigger",
             "Starts the workflow when a hosted form is submitted"),
    NodeInfo("n8n-nodes-base.emailReadImap", "Email Trigger (IMAP)", 2, "trigger",
             "Starts the workflow when a new email arrives"),
    NodeInfo("n8n-nodes-base.githubTrigger", "GitHub Trigger", 1, "trigger",
             "Starts the workflow on GitHub repository events"),
    NodeInfo("n8n-nodes-base.slackTrigger", "Slack Trigger", 1, "trigger",
             "Starts the workflow on Slack events"),
    # Core
    NodeInfo("n8n-nodes-base.httpRequest", "HTTP Request", 4, "core",
             "Makes an HTTP request and returns the response"),
    NodeInfo("n8n-nodes-base.code", "Code", 2, "core",
             "Runs custom JavaScript or Python code"),
    NodeInfo("n8n-nodes-base.set", "Edit Fields (Set)", 3, "core",
             "Adds, modifies or removes item fields"),
    NodeInfo("n8n-nodes-base.respondToWebhook", "Respond to Webhook", 1, "core",
             "Returns data to the caller of a Webhook node"),
    NodeInfo("n8n-nodes-base.wait", "Wait", 1, "core",
             "Pauses execution for a time or until a webhook call"),
    NodeInfo("n8n-nodes-base.executeWorkflow", "Execute Workflow", 1, "core",
             "Runs another workflow"),
    # Flow
    NodeInfo("n8n-nodes-base.if", "If", 2, "flow",
             "Routes items to output 0 (true) or output 1 (false)"),
    NodeInfo("n8n-nodes-base.switch", "Switch", 3, "flow",
             "Routes items to one of several outputs by rules"),
    NodeInfo("n8n-nodes-base.merge", "Merge", 3, "flow",
             "Merges data from two inputs (input 0 and input 1)"),
    NodeInfo("n8n-nodes-base.splitInBatches", "Loop Over Items", 3, "flow",
             "Splits items into batches and loops over them"),
    NodeInfo("n8n-nodes-base.filter", "Filter", 2, "flow",
             "Keeps only items matching conditions"),
    NodeInfo("n8n-nodes-base.noOp", "No Operation", 1, "flow",
             "Does nothing; useful as a placeholder"),
    # Data
    NodeInfo("n8n-nodes-base.itemLists", "Item Lists", 3, "data",
             "Splits, aggregates, sorts or limits item lists"),
    NodeInfo("n8n-nodes-base.dateTime", "Date & Time", 2, "data",
             "Formats and manipulates dates"),
    NodeInfo("n8n-nodes-base.crypto", "Crypto", 1, "data",
             "Hashes, signs or generates random values"),
    NodeInfo("n8n-nodes-base.html", "HTML", 1, "data",
             "Extracts content from HTML or generates HTML"),
    NodeInfo("n8n-nodes-base.spreadsheetFile", "Spreadsheet File", 2, "data",
             "Reads or writes CSV and spreadsheet files"),
    # Apps
    NodeInfo("n8n-nodes-base.slack", "Slack", 2, "apps",
             "Sends messages and manages Slack channels", ("message", "channel", "user", "file")),
    NodeInfo("n8n-nodes-base.gmail", "Gmail", 2, "apps",
             "Sends and reads Gmail messages", ("message", "label", "draft", "thread")),
    NodeInfo("n8n-nodes-base.emailSend", "Send Email", 2, "apps",
             "Sends an email over SMTP"),
    NodeInfo("n8n-nodes-base.googleSheets", "Google Sheets", 4, "apps",
             "Reads and writes Google Sheets rows", ("sheet", "spreadsheet")),
    NodeInfo("n8n-nodes-base.notion", "Notion", 2, "apps",
             "Manages Notion pages and databases", ("block", "database", "databasePage", "page", "user")),
    NodeInfo("n8n-nodes-base.github", "GitHub", 1, "apps",
             "Manages GitHub issues, files and repositories", ("file", "issue", "repository", "release")),
    NodeInfo("n8n-nodes-base.telegram", "Telegram", 1, "apps",
             "Sends Telegram messages", ("message", "chat", "file")),
    NodeInfo("n8n-nodes-base.discord", "Discord", 2, "apps",
             "Sends Discord messages", ("message", "channel")),
    NodeInfo("n8n-nodes-base.airtable", "Airtable", 2, "apps",
             "Reads and writes Airtable records", ("record", "base")),
    NodeInfo("n8n-nodes-base.postgres", "Postgres", 2, "apps",
             "Runs queries against PostgreSQL", ("database",)),
    # AI
    NodeInfo("@n8n/n8n-nodes-langchain.agent", "AI Agent", 1, "ai",
             "LLM agent; attach a chat model via ai_languageModel, tools via ai_tool, memory via ai_memory"),
    NodeInfo("@n8n/n8n-nodes-langchain.lmChatOpenAi", "OpenAI Chat Model", 1, "ai",
             "OpenAI chat model for agents and chains"),
    NodeInfo("@n8n/n8n-nodes-langchain.lmChatAnthropic", "Anthropic Chat Model", 1, "ai",
             "Anthropic chat model for agents and chains"),
    NodeInfo("@n8n/n8n-nodes-langchain.memoryBufferWindow", "Window Buffer Memory", 1, "ai",
             "Keeps recent conversation turns as agent memory"),
    NodeInfo("@n8n/n8n-nodes-langchain.toolHttpRequest", "HTTP Request Tool", 1, "ai",
             "Lets an agent call an HTTP API"),
    NodeInfo("@n8n/n8n-nodes-langchain.chatTrigger", "Chat Trigger", 1, "ai",
             "Starts the workflow from a chat message"),
)


def format_node_catalog(nodes: Iterable[NodeInfo] = NODE_CATALOG) -> str:
    """Render the catalog as markdown, one section per category in first-seen order."""
    by_category: dict[str, list[NodeInfo]] = {}
    for node in nodes:
        by_category.setdefault(node.category, []).append(node)

    sections: list[str] = []
    for category, members in by_category.items():
        lines = [f"### {category.capitalize()} Nodes"]
        for node in members:
            line = f"- **{node.display_name}** (`{node.type}`, v{node.version}): {node.description}"
            if node.resources:
                line += f" [resources: {', '.join(node.resources)}]"
            lines.append(line)
        sections.append("\n".join(lines))
    return "\n\n".join(sections)


_N8N_TOOLS_AVAILABLE = """\
5. Validate the workflow against the live n8n instance (validate_workflow_with_n8n)
6. Create the workflow in n8n (create_workflow_in_n8n)"""

_N8N_TOOLS_UNAVAILABLE = """\
5. validate_workflow_with_n8n and create_workflow_in_n8n exist but the n8n API is
   not configured in this session. Do not rely on them; local validation still runs."""

_SYSTEM_PROMPT = """\
You are an n8n Workflow Builder AI. Your task is to create n8n-compatible workflows based on user requests.

## Your Capabilities

You have tools that allow you to:
1. Add nodes to the workflow (add_node)
2. Connect nodes together (connect_nodes)
3. Get the current workflow state (get_current_workflow)
4. Update node parameters (update_node_parameters)
{n8n_tools}

## Available n8n Nodes

{catalog}

You can also use other n8n nodes not listed above. Use your knowledge of n8n to select appropriate nodes and parameters.

## Workflow Building Process

### STEP 1: UNDERSTAND THE REQUEST
- Identify the trigger (how the workflow starts)
- Identify the actions (what the workflow does)

### STEP 2: ADD NODES (in order)
- First add a trigger node, then the action nodes in execution order
- add_node takes: type (e.g. "n8n-nodes-base.httpRequest"), typeVersion (a positive integer),
  name (unique and descriptive), parameters (node-specific configuration)
- Node IDs and canvas positions are assigned for you

### STEP 3: CONNECT NODES
- Connect nodes with connect_nodes; data flows from source to target
- Branching nodes use sourceOutput (If: 0 = true, 1 = false); Merge uses targetInput 0 and 1
- AI sub-nodes connect with connectionType ai_languageModel, ai_tool or ai_memory

### STEP 4: VERIFY AND FINISH
- Call get_current_workflow to review the final JSON
- Then reply without calling tools. The workflow is validated automatically when you stop.

## n8n Workflow JSON Format

```json
{{
  "name": "Workflow Name",
  "nodes": [
    {{
      "id": "node_1",
      "name": "Node Name",
      "type": "n8n-nodes-base.nodeType",
      "typeVersion": 1,
      "position": [100, 100],
      "parameters": {{}}
    }}
  ],
  "connections": {{
    "Source Node Name": {{
      "main": [[{{ "node": "Target Node Name", "type": "main", "index": 0 }}]]
    }}
  }},
  "settings": {{ "executionOrder": "v1" }}
}}
```

## Important Rules
1. ALWAYS start with a trigger node
2. Give each node a unique, descriptive name (in English); names are case-sensitive
3. Connect all nodes in a logical flow
4. After building, ALWAYS call get_current_workflow
5. If unsure about parameters, use sensible defaults
6. For Slack nodes, use the "#" prefix for channel names
7. A failed tool call returns an error message; read it and correct the call

## n8n API Validation Strategy

When validate_workflow_with_n8n is available:
- Use it for complex workflows and after significant fixes
- Recoverable errors: missing required parameters (use update_node_parameters), invalid
  parameter values, connection mistakes
- Non-recoverable errors: credentials (OAuth, API keys, authentication) must be configured
  by the user in n8n; stop and say so
- Do not retry endlessly: two or three attempts at most
- Leave IDs and tokens as placeholders for the user; use expressions like `{{{{ $json.field }}}}`
  for values from previous nodes

## Example

User: "Create a webhook that sends a message to Slack"

1. add_node: {{ "type": "n8n-nodes-base.webhook", "typeVersion": 2, "name": "Webhook Trigger", "parameters": {{ "httpMethod": "POST", "path": "webhook" }} }}
2. add_node: {{ "type": "n8n-nodes-base.slack", "typeVersion": 2, "name": "Send Slack Message", "parameters": {{ "resource": "message", "operation": "post", "channel": "#general", "text": "New webhook received!" }} }}
3. connect_nodes: {{ "sourceNode": "Webhook Trigger", "targetNode": "Send Slack Message" }}
4. get_current_workflow: {{ "name": "Webhook to Slack" }}"""


def get_system_prompt(n8n_available: bool = False) -> str:
    return _SYSTEM_PROMPT.format(
        n8n_tools=_N8N_TOOLS_AVAILABLE if n8n_available else _N8N_TOOLS_UNAVAILABLE,
        catalog=format_node_catalog(),
    )


def build_retry_prompt(errors: str, analysis: ErrorAnalysis) -> str:
    """Corrective user message injected after a failed validation."""
    parts = [
        "The workflow validation failed with the following errors:",
        errors,
        "",
    ]
    if analysis.suggested_action:
        parts += [f"Suggested action: {analysis.suggested_action}", ""]
    parts += [
        "Please analyze the errors and fix the workflow. You may need to:",
        "1. Update node parameters using update_node_parameters",
        "2. Add a missing node with add_node (using a new, unique name)",
        "3. Fix connections between nodes with connect_nodes",
        "",
        "After making corrections, call get_current_workflow to verify the fix.",
    ]
    return "\n".join(parts)
