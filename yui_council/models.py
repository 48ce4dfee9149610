"""Pure dataclasses for the dialogue pipeline. No logic, no deps."""

from dataclasses import dataclass, field


@dataclass
class Question:
    text: str
    source: str  # "cli" or file path


@dataclass
class ModelResponse:
    provider: str          # "claude", "openai", "gemini", "grok"
    model: str             # actual model string used
    round_number: int
    content: str
    latency_sec: float
    token_count: int | None


@dataclass(frozen=True)
class ConsensusIndicator:
    agent_id: str
    satisfaction_level: int          # 0-10, clamped by the parser
    has_additional_points: bool
    ready_to_move: bool
    questions_for_others: tuple[str, ...] = ()
    reasoning: str = ""
    meaningful_insights: bool = False
    estimated: bool = False          # early-exit filler, not a real response


@dataclass
class RagDissonance:
    summary: str
    source: str
    similarity: float


@dataclass
class DynamicInstruction:
    content: str
    tone: str                        # "deconstructive", "exploratory", "integrative"
    trigger_reason: str              # dialogue pattern or "rag_similarity"
    generated_at: str
    rag_dissonance: RagDissonance | None = None


@dataclass
class FacilitatorAction:
    type: str                        # one of config.config_loader.ACTION_TYPES
    reason: str
    priority: int
    target: str | None = None
    dynamic_instruction: DynamicInstruction | None = None


@dataclass
class Vote:
    voter_id: str
    voted_agent: str | None
    reasoning: str | None
    timestamp: str
    vote_section: str | None = None


@dataclass
class VoteDetails:
    voted_agent: str | None
    reasoning: str | None
    vote_section: str | None


@dataclass
class Message:
    agent_id: str
    agent_name: str
    round_number: int
    role: str                        # "agent", "system", "finalizer"
    content: str
    timestamp: str


@dataclass
class RoundRecord:
    number: int
    messages: list[Message] = field(default_factory=list)
    consensus: list[ConsensusIndicator] = field(default_factory=list)
    overall_consensus: float = 0.0
    should_continue: bool = True
    pattern: str | None = None
    action: FacilitatorAction | None = None
    instruction: DynamicInstruction | None = None


@dataclass
class FinalizerOutput:
    agent_id: str
    role: str                        # "single", "foundation", "integrator", "enricher"
    content: str


@dataclass
class DialogueResult:
    session_id: str
    question: Question
    rounds: list[RoundRecord]
    votes: list[Vote]
    finalizers: list[str]
    finalizer_outputs: list[FinalizerOutput]
    conclusion: str
    convergence_reason: str
    total_duration_sec: float
    language: str = "en"


@dataclass
class SessionRecord:
    session_id: str
    question: str
    status: str                      # RouterState value
    language: str
    current_round: int
    created_at: str
    updated_at: str
    messages: list[dict] = field(default_factory=list)
    rounds: list[dict] = field(default_factory=list)
    error: str | None = None
