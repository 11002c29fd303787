"""Chat workflow whose agent can look up the current time."""

from __future__ import annotations

from typing import Any

from workflow_dsl.engine.discovery import BaseWorkflow, workflow_id

_HANDLE = '''
async def handle(event, context):
    response = await ChatBot.run(event.data["input"])
    text = response["result"]
    try:
        result = json.loads(text)["result"]
    except (ValueError, KeyError, TypeError):
        result = text
    return {"type": "WORKFLOW_STOP", "data": {"result": result}}
'''


@workflow_id("time-query-workflow-01")
class TimeQueryWorkflow(BaseWorkflow):
    name = "Smart chat workflow"
    description = "Auto-reply chatbot that can tell the current time"

    def get_dsl(self) -> dict[str, Any]:
        return {
            "id": "timeQueryWorkflow",
            "name": self.name,
            "description": self.description,
            "version": "v1",
            "tools": ["getCurrentTime"],
            "agents": [
                {
                    "name": "ChatBot",
                    "description": "Friendly chat assistant with access to the current time",
                    "prompt": (
                        "You are a friendly chat assistant. When the user's question involves "
                        "the current date or time, call the getCurrentTime tool and use its "
                        "answer in your reply. Otherwise just talk with the user normally."
                    ),
                    "output": {"result": "string"},
                    "tools": ["getCurrentTime"],
                }
            ],
            "events": [
                {"type": "WORKFLOW_START", "data": {"input": "string"}},
                {"type": "WORKFLOW_STOP", "data": {"result": "string"}},
            ],
            "steps": [{"event": "WORKFLOW_START", "handle": _HANDLE}],
        }
