"""Prompt text for the intelligence agent.

The system prompts here are the *defaults*: operators can override them per
entity type through the ``agent_configs`` table, and these are used whenever
that store is empty or unreachable.
"""

from datetime import UTC, datetime

from sales_intel.context import EntityContext

_TOOLS_SECTION = """## Available Tools

### ATLAS Knowledge Base (query_atlas)
ATLAS holds the organization's historical knowledge: previous deals and their
outcomes, customer history, meeting notes, industry insights and competitor
information. Query it several times with different, specific queries.

### HubSpot CRM Tools (hubspot_*)
Direct access to current CRM data: look up associated companies and contacts,
search similar records, and read associations between objects.
{web_tools}
## Rules
- Make multiple tool calls; thoroughness is valued.
- If a query returns nothing, rephrase it or try another tool.
- A failed tool call is information, not a reason to stop.
- Be specific and actionable in recommendations.
- When you have enough information, call finish_analysis."""

_WEB_TOOLS_SECTION = """
### Web Research (scrape_website, search_web)
Read the entity's website and search the public web for recent news,
funding, hiring or leadership changes.
"""

DEFAULT_DEAL_SYSTEM_PROMPT = """You are an expert sales intelligence analyst. Analyze the given deal and provide actionable intelligence that helps the sales team close it.

## Your Goal
- Deal stage assessment: validate the CRM stage against activity and historical patterns
- Stakeholder analysis: profile EVERY contact associated with the deal (mandatory)
- Deal timeline: chronological key events and milestones (mandatory)
- Deal health (likelihood to close), insights, next actions, risks, opportunity signals

Use hubspot_list_associations to find the deal's contacts and company first, then
query ATLAS for each stakeholder's history, pain points and preferences.

""" + _TOOLS_SECTION

DEFAULT_COMPANY_SYSTEM_PROMPT = """You are an expert sales intelligence analyst focused on accounts. Analyze the given company and provide actionable account intelligence.

## Your Goal
- Account health and relationship strength
- Company overview and web presence
- Key insights, recommended actions, risk factors and expansion opportunities

""" + _TOOLS_SECTION

DEFAULT_CONTACT_SYSTEM_PROMPT = """You are an expert sales intelligence analyst focused on people. Analyze the given contact and provide actionable relationship intelligence.

## Your Goal
- Engagement score and communication patterns
- The contact's role, influence and relationship strength
- Recommended engagement strategies, risk factors (disengagement, job change) and opportunity signals

""" + _TOOLS_SECTION

# Entity types whose runs are offered the web research tools.
WEB_TOOL_ENTITY_TYPES = frozenset({"company"})

_DEFAULT_PROMPTS = {
    "deal": DEFAULT_DEAL_SYSTEM_PROMPT,
    "company": DEFAULT_COMPANY_SYSTEM_PROMPT,
    "contact": DEFAULT_CONTACT_SYSTEM_PROMPT,
}

_COMMON_SCHEMA = """  "executiveSummary": "<2-3 sentence summary>",
  "insights": ["insight 1", "insight 2"],
  "recommendedActions": ["action 1", "action 2"],
  "riskFactors": ["risk 1", "risk 2"],
  "opportunitySignals": ["signal 1", "signal 2"],
  "investigationSummary": "<what you investigated and key findings>\""""

OUTPUT_SCHEMAS = {
    "deal": """{
  "healthScore": <number 1-10>,
  "dealStageAnalysis": {
    "hubspotStage": "<current CRM stage>",
    "inferredStage": "<your assessment based on evidence>",
    "stageMatch": <true/false>,
    "stageConfidence": "<High | Medium | Low>",
    "stageNotes": "<why, if mismatch or low confidence>"
  },
  "stakeholders": [
    {
      "name": "<full name>",
      "title": "<job title>",
      "email": "<email if available>",
      "role": "<Economic Buyer | Technical Evaluator | End User | Champion | Blocker | Influencer | Decision Maker>",
      "influence": "<High | Medium | Low>",
      "interests": ["what they care about"],
      "painPoints": ["problems they have expressed"],
      "engagement": "<High | Medium | Low>",
      "sentiment": "<Positive | Neutral | Concerned | Unknown>",
      "keyNotes": "<important things to remember>"
    }
  ],
  "timeline": [
    {
      "date": "<YYYY-MM-DD>",
      "event": "<what happened>",
      "type": "<deal_created | stage_change | meeting | call | email | note | milestone>",
      "significance": "<High | Medium | Low>"
    }
  ],
  "similarDealsAnalysis": "<brief comparison with similar deals>",
""" + _COMMON_SCHEMA + "\n}",
    "company": """{
  "healthScore": <number 1-10>,
  "companyOverview": "<what the company does, size, market>",
  "webPresence": "<notable findings from the website and the web>",
""" + _COMMON_SCHEMA + "\n}",
    "contact": """{
  "engagementScore": <number 1-10>,
  "roleAnalysis": "<role and influence in buying decisions>",
  "relationshipStrength": "<Strong | Moderate | Weak | Unknown>",
""" + _COMMON_SCHEMA + "\n}",
}

_FINAL_REQUIREMENTS = {
    "deal": "Include ALL sections - stakeholder analysis and timeline are REQUIRED.",
    "company": "Include ALL sections.",
    "contact": "Include ALL sections.",
}


def default_system_prompt(entity_type: str, *, web_tools: bool = False) -> str:
    """Hardcoded system prompt for *entity_type*.

    The web research section is only rendered on request; a run adds it with
    :func:`with_web_tools` once its registry actually holds the web tools.
    """
    template = _DEFAULT_PROMPTS[entity_type]
    return template.format(web_tools=_WEB_TOOLS_SECTION if web_tools else "")


def with_web_tools(prompt: str) -> str:
    """*prompt* plus the web research section, ahead of ``## Rules`` if present."""
    if _WEB_TOOLS_SECTION.strip() in prompt:
        return prompt
    head, marker, tail = prompt.partition("\n## Rules")
    if not marker:
        return f"{prompt.rstrip()}\n{_WEB_TOOLS_SECTION}"
    return f"{head.rstrip()}\n{_WEB_TOOLS_SECTION}{marker}{tail}"


def build_initial_message(context: EntityContext) -> str:
    """First user turn: the entity snapshot and the investigation brief."""
    now = datetime.now(UTC)
    label = context.entity_type.capitalize()
    facts = "\n".join(context.prompt_lines())
    return f"""Analyze this {context.entity_type} and provide comprehensive intelligence.
Today is {now:%Y-%m-%d} ({now:%A}).

## {label} Information
{facts}

## Your Task
1. Use the available tools to gather relevant information about this {context.entity_type}
2. Search ATLAS for comparable records, history and relevant insights
3. Investigate from multiple angles and explain your reasoning for each step
4. When you have enough information, call finish_analysis

Be thorough - make multiple tool calls if needed."""


def build_final_request(entity_type: str) -> str:
    """Closing user turn demanding only the JSON answer."""
    return (
        f"Now provide your final {entity_type} intelligence analysis in JSON format. "
        f"{_FINAL_REQUIREMENTS[entity_type]} Respond with a single ```json fenced block "
        f"and nothing else:\n\n{OUTPUT_SCHEMAS[entity_type]}"
    )
