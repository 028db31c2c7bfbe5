"""
Architecture templates: hand-authored reference specs with trigger keywords.

Table order is significant. Resolution is first-match-wins in declaration
order, so moving an entry changes which template a prompt resolves to
(e.g. "vpn" is declared before "hybrid").
"""

from __future__ import annotations

from typing import NamedTuple

from infraflow.catalog import label_for_type, tier_for_type
from infraflow.spec import Connection, Node, Spec


class TemplateEntry(NamedTuple):
    template_id: str
    keywords: tuple[str, ...]
    spec: Spec


# (id, type, label, tier); tier None means "use the catalog default"
_NodeRow = tuple[str, str, str, str | None]
# (source, target, flow_type, label)
_EdgeRow = tuple[str, str, str, str | None]


def _build(name: str, description: str, nodes: list[_NodeRow], edges: list[_EdgeRow]) -> Spec:
    return Spec(
        name=name,
        description=description,
        nodes=[
            Node(id=nid, type=ntype, label=label or label_for_type(ntype), tier=tier or tier_for_type(ntype))
            for nid, ntype, label, tier in nodes
        ],
        connections=[
            Connection(source=src, target=tgt, flow_type=flow, label=label)
            for src, tgt, flow, label in edges
        ],
    )


# ---------------------------------------------------------------------------
# Template table (declaration order = match priority)
# ---------------------------------------------------------------------------
TEMPLATES: tuple[TemplateEntry, ...] = (
    TemplateEntry(
        "3tier",
        ("3티어", "3-tier", "3tier", "웹 아키텍처", "web architecture", "3계층"),
        _build(
            "3-Tier Web Architecture",
            "CDN과 보안 장비 뒤에 웹/앱/DB 계층을 분리한 전형적인 웹 아키텍처",
            [
                ("user", "user", "User", None),
                ("cdn", "cdn", "CDN", "external"),
                ("firewall", "firewall", "Firewall", "dmz"),
                ("waf", "waf", "WAF", "dmz"),
                ("lb", "load-balancer", "Load Balancer", "dmz"),
                ("web1", "web-server", "Web Server 1", "internal"),
                ("web2", "web-server", "Web Server 2", "internal"),
                ("app1", "app-server", "App Server 1", "internal"),
                ("app2", "app-server", "App Server 2", "internal"),
                ("db", "db-server", "Database", "data"),
            ],
            [
                ("user", "cdn", "request", None),
                ("cdn", "firewall", "request", None),
                ("firewall", "waf", "request", None),
                ("waf", "lb", "request", None),
                ("lb", "web1", "request", None),
                ("lb", "web2", "request", None),
                ("web1", "app1", "request", None),
                ("web2", "app2", "request", None),
                ("app1", "db", "request", None),
                ("app2", "db", "request", None),
            ],
        ),
    ),
    TemplateEntry(
        "vpn",
        ("vpn", "내부망", "internal network", "원격 접속", "remote access", "사내망"),
        _build(
            "VPN + Internal Network",
            "원격 사용자가 VPN을 통해 내부망 서버에 접근하는 구성",
            [
                ("user", "user", "Remote User", None),
                ("internet", "internet", "Internet", "external"),
                ("vpn", "vpn-gateway", "VPN Gateway", "dmz"),
                ("firewall", "firewall", "Internal Firewall", "dmz"),
                ("router", "router", "Core Router", "internal"),
                ("server1", "app-server", "Internal Server 1", "internal"),
                ("server2", "app-server", "Internal Server 2", "internal"),
                ("ldap", "ldap-ad", "LDAP/AD", "internal"),
            ],
            [
                ("user", "internet", "encrypted", None),
                ("internet", "vpn", "encrypted", None),
                ("vpn", "firewall", "request", None),
                ("firewall", "router", "request", None),
                ("router", "server1", "request", None),
                ("router", "server2", "request", None),
                ("vpn", "ldap", "request", "Auth"),
            ],
        ),
    ),
    TemplateEntry(
        "k8s",
        ("kubernetes", "k8s", "쿠버네티스", "container", "컨테이너", "pod"),
        _build(
            "Kubernetes Cluster",
            "Ingress 뒤에 서비스와 파드, 영구 스토리지를 둔 쿠버네티스 클러스터",
            [
                ("user", "user", "User", None),
                ("ingress", "load-balancer", "Ingress Controller", "internal"),
                ("svc", "kubernetes", "Service", "internal"),
                ("pod1", "container", "Pod 1", "internal"),
                ("pod2", "container", "Pod 2", "internal"),
                ("pod3", "container", "Pod 3", "internal"),
                ("pv", "storage", "Persistent Volume", "data"),
                ("db", "db-server", "Database", "data"),
            ],
            [
                ("user", "ingress", "request", None),
                ("ingress", "svc", "request", None),
                ("svc", "pod1", "request", None),
                ("svc", "pod2", "request", None),
                ("svc", "pod3", "request", None),
                ("pod1", "pv", "sync", None),
                ("pod2", "db", "request", None),
            ],
        ),
    ),
    TemplateEntry(
        "simple-waf",
        ("waf", "로드밸런서", "load balancer", "웹서버", "web server"),
        _build(
            "Simple WAF + Load Balancer",
            "WAF와 로드밸런서 뒤에 웹서버 두 대를 둔 최소 구성",
            [
                ("user", "user", "User", None),
                ("waf", "waf", "WAF", "dmz"),
                ("lb", "load-balancer", "Load Balancer", "dmz"),
                ("web1", "web-server", "Web Server 1", "internal"),
                ("web2", "web-server", "Web Server 2", "internal"),
            ],
            [
                ("user", "waf", "request", None),
                ("waf", "lb", "request", None),
                ("lb", "web1", "request", None),
                ("lb", "web2", "request", None),
            ],
        ),
    ),
    TemplateEntry(
        "hybrid",
        ("hybrid", "하이브리드", "cloud", "클라우드", "aws", "azure", "on-premise"),
        _build(
            "Cloud Hybrid",
            "퍼블릭 클라우드 워크로드와 온프레미스 데이터베이스를 VPN으로 연결",
            [
                ("user", "user", "User", None),
                ("cdn", "cdn", "CDN", None),
                ("aws", "aws-vpc", "AWS VPC", "external"),
                ("alb", "load-balancer", "ALB", "external"),
                ("ec2", "vm", "EC2 Instance", "external"),
                ("vpn", "vpn-gateway", "VPN Gateway", "dmz"),
                ("onprem-fw", "firewall", "On-Premise FW", "internal"),
                ("onprem-db", "db-server", "On-Premise DB", "internal"),
            ],
            [
                ("user", "cdn", "request", None),
                ("cdn", "alb", "request", None),
                ("alb", "ec2", "request", None),
                ("ec2", "vpn", "encrypted", None),
                ("vpn", "onprem-fw", "encrypted", None),
                ("onprem-fw", "onprem-db", "request", None),
            ],
        ),
    ),
    TemplateEntry(
        "microservices",
        ("마이크로서비스", "microservice", "msa", "api gateway", "서비스 메시"),
        _build(
            "Microservices Architecture",
            "API 게이트웨이 뒤의 독립 서비스들과 메시지 큐, 서비스별 DB",
            [
                ("user", "user", "User", None),
                ("api-gw", "load-balancer", "API Gateway", "dmz"),
                ("auth-svc", "container", "Auth Service", "internal"),
                ("user-svc", "container", "User Service", "internal"),
                ("order-svc", "container", "Order Service", "internal"),
                ("payment-svc", "container", "Payment Service", "internal"),
                ("msg-queue", "cache", "Message Queue", "internal"),
                ("user-db", "db-server", "User DB", "data"),
                ("order-db", "db-server", "Order DB", "data"),
            ],
            [
                ("user", "api-gw", "request", None),
                ("api-gw", "auth-svc", "request", None),
                ("api-gw", "user-svc", "request", None),
                ("api-gw", "order-svc", "request", None),
                ("order-svc", "msg-queue", "sync", None),
                ("msg-queue", "payment-svc", "sync", None),
                ("user-svc", "user-db", "request", None),
                ("order-svc", "order-db", "request", None),
            ],
        ),
    ),
    TemplateEntry(
        "zero-trust",
        ("제로트러스트", "zero trust", "ztna", "제로 트러스트", "identity"),
        _build(
            "Zero Trust Architecture",
            "인증, MFA, 정책 검사를 거친 후에만 워크로드에 접근하는 제로트러스트 구성",
            [
                ("user", "user", "User", None),
                ("idp", "sso", "Identity Provider", "external"),
                ("mfa", "mfa", "MFA", "external"),
                ("ztna", "vpn-gateway", "ZTNA Gateway", "dmz"),
                ("policy", "firewall", "Policy Engine", "dmz"),
                ("dlp", "dlp", "DLP", "dmz"),
                ("app", "app-server", "Application", "internal"),
                ("data", "db-server", "Data Store", "internal"),
            ],
            [
                ("user", "idp", "request", "1. Authenticate"),
                ("idp", "mfa", "request", "2. MFA"),
                ("mfa", "ztna", "encrypted", "3. Verify"),
                ("ztna", "policy", "request", "4. Policy Check"),
                ("policy", "dlp", "request", "5. DLP Scan"),
                ("dlp", "app", "encrypted", "6. Access"),
                ("app", "data", "encrypted", None),
            ],
        ),
    ),
    TemplateEntry(
        "dr",
        ("dr", "disaster recovery", "재해복구", "이중화", "failover", "ha", "high availability"),
        _build(
            "Disaster Recovery",
            "글로벌 DNS로 주 사이트와 DR 사이트를 전환하고 DB를 복제하는 구성",
            [
                ("user", "user", "User", None),
                ("dns", "dns", "Global DNS", "external"),
                ("lb-primary", "load-balancer", "Primary LB", "internal"),
                ("app-primary", "app-server", "Primary App", "internal"),
                ("db-primary", "db-server", "Primary DB", "internal"),
                ("lb-dr", "load-balancer", "DR LB", "internal"),
                ("app-dr", "app-server", "DR App", "internal"),
                ("db-dr", "db-server", "DR DB", "internal"),
            ],
            [
                ("user", "dns", "request", None),
                ("dns", "lb-primary", "request", "Active"),
                ("dns", "lb-dr", "blocked", "Standby"),
                ("lb-primary", "app-primary", "request", None),
                ("app-primary", "db-primary", "request", None),
                ("lb-dr", "app-dr", "request", None),
                ("app-dr", "db-dr", "request", None),
                ("db-primary", "db-dr", "sync", "Replication"),
            ],
        ),
    ),
    TemplateEntry(
        "api",
        ("api", "rest", "backend", "백엔드", "restful", "graphql"),
        _build(
            "API Backend",
            "엣지, 보안, 게이트웨이를 거쳐 버전별 API와 캐시, DB로 이어지는 백엔드",
            [
                ("client", "user", "API Client", None),
                ("cdn", "cdn", "CDN/Edge", "external"),
                ("waf", "waf", "WAF", "dmz"),
                ("rate-limit", "firewall", "Rate Limiter", "dmz"),
                ("api-gw", "load-balancer", "API Gateway", "dmz"),
                ("api-v1", "app-server", "API v1", "internal"),
                ("api-v2", "app-server", "API v2", "internal"),
                ("cache", "cache", "Redis Cache", "data"),
                ("db", "db-server", "PostgreSQL", "data"),
            ],
            [
                ("client", "cdn", "request", None),
                ("cdn", "waf", "request", None),
                ("waf", "rate-limit", "request", None),
                ("rate-limit", "api-gw", "request", None),
                ("api-gw", "api-v1", "request", None),
                ("api-gw", "api-v2", "request", None),
                ("api-v1", "cache", "request", None),
                ("api-v2", "cache", "request", None),
                ("cache", "db", "request", None),
            ],
        ),
    ),
    TemplateEntry(
        "iot",
        ("iot", "사물인터넷", "mqtt", "sensor", "센서", "edge"),
        _build(
            "IoT Platform",
            "디바이스 게이트웨이에서 MQTT, 스트림 처리, 시계열 저장소로 이어지는 IoT 구성",
            [
                ("device", "user", "IoT Device", None),
                ("gateway", "router", "IoT Gateway", "external"),
                ("mqtt", "cache", "MQTT Broker", "dmz"),
                ("stream", "app-server", "Stream Processor", "internal"),
                ("analytics", "app-server", "Analytics Engine", "internal"),
                ("timeseries", "db-server", "TimeSeries DB", "data"),
                ("storage", "storage", "Data Lake", "data"),
                ("dashboard", "web-server", "Dashboard", "internal"),
            ],
            [
                ("device", "gateway", "request", None),
                ("gateway", "mqtt", "sync", None),
                ("mqtt", "stream", "sync", None),
                ("stream", "timeseries", "request", None),
                ("stream", "analytics", "sync", None),
                ("analytics", "storage", "request", None),
                ("timeseries", "dashboard", "response", None),
                ("storage", "dashboard", "response", None),
            ],
        ),
    ),
    TemplateEntry(
        "vdi-openclaw",
        ("openclaw", "오픈클로", "비서ai", "의회 ai", "vdi llm", "의정 ai", "클로드봇", "몰트봇"),
        _build(
            "VDI + 비서AI",
            "VPN과 2차 인증 뒤 VDI 세션에서 내부망 LLM과 RAG를 호출하는 비서AI 구성",
            [
                ("member", "user", "의원 (외부단말)", None),
                ("vpn-2fa", "vpn-gateway", "VPN + 2FA/DID", "external"),
                ("vdi-gw", "load-balancer", "VDI Gateway", "dmz"),
                ("vdi-session", "vm", "VDI 세션 (가상PC)", "internal"),
                ("openclaw", "container", "OpenClaw 비서AI", "internal"),
                ("llm", "app-server", "내부망 LLM", "internal"),
                ("rag", "app-server", "RAG Engine", "internal"),
                ("vectordb", "db-server", "Vector DB", "data"),
                ("docs", "storage", "의정자료/회의록", "data"),
            ],
            [
                ("member", "vpn-2fa", "encrypted", "VPN 접속"),
                ("vpn-2fa", "vdi-gw", "encrypted", "DID 인증"),
                ("vdi-gw", "vdi-session", "request", None),
                ("vdi-session", "openclaw", "request", "비서AI 호출"),
                ("openclaw", "llm", "request", "LLM 추론"),
                ("openclaw", "rag", "request", "RAG 검색"),
                ("rag", "vectordb", "request", None),
                ("rag", "docs", "request", None),
            ],
        ),
    ),
    TemplateEntry(
        "assembly-vdi",
        ("의원 vdi", "다중 pc", "의회 vdi", "의원실", "본회의장", "상임위", "지역상담소", "의원 업무환경"),
        _build(
            "다중 PC 통합 VDI",
            "여러 장소의 단말이 하나의 VDI 포털로 접속해 프로파일과 자료를 동기화",
            [
                ("member", "user", "의원", None),
                ("main-hall", "user", "본회의장 PC", None),
                ("committee", "user", "상임위 PC", None),
                ("office", "user", "의원실 PC", None),
                ("local", "user", "지역상담소 PC", None),
                ("laptop", "user", "지급 노트북", None),
                ("vdi-portal", "load-balancer", "VDI 포털", "dmz"),
                ("vdi-server", "vm", "VDI 서버팜", "internal"),
                ("profile", "storage", "프로파일 동기화", "internal"),
                ("file-server", "storage", "통합 파일서버", "data"),
            ],
            [
                ("main-hall", "vdi-portal", "request", None),
                ("committee", "vdi-portal", "request", None),
                ("office", "vdi-portal", "request", None),
                ("local", "vdi-portal", "encrypted", None),
                ("laptop", "vdi-portal", "encrypted", None),
                ("vdi-portal", "vdi-server", "request", None),
                ("vdi-server", "profile", "sync", "프로파일 로밍"),
                ("vdi-server", "file-server", "request", "자료 동기화"),
            ],
        ),
    ),
    TemplateEntry(
        "network-separation-llm",
        ("망분리 llm", "내부망 llm", "인터넷망 llm", "망분리 ai", "중계서버"),
        _build(
            "망분리 환경 내부망 LLM",
            "인터넷망에서 중계서버와 DLP를 거쳐 내부망 LLM에 접근하는 망분리 구성",
            [
                ("user", "user", "사용자 (인터넷망)", None),
                ("internet-pc", "web-server", "인터넷망 PC", "external"),
                ("firewall", "firewall", "망분리 방화벽", "dmz"),
                ("relay", "app-server", "API 중계서버", "dmz"),
                ("dlp", "dlp", "DLP", "dmz"),
                ("internal-pc", "web-server", "내부망 PC", "internal"),
                ("llm-server", "app-server", "LLM 서버", "internal"),
                ("gpu", "container", "GPU 클러스터", "internal"),
                ("knowledge", "db-server", "지식베이스", "internal"),
            ],
            [
                ("user", "internet-pc", "request", None),
                ("internet-pc", "firewall", "blocked", "직접접근 차단"),
                ("internet-pc", "relay", "request", "API 호출"),
                ("relay", "dlp", "request", "데이터 검사"),
                ("dlp", "llm-server", "encrypted", None),
                ("llm-server", "gpu", "request", "추론"),
                ("llm-server", "knowledge", "request", "RAG"),
                ("llm-server", "internal-pc", "response", None),
            ],
        ),
    ),
    TemplateEntry(
        "hybrid-vdi",
        ("하이브리드 vdi", "클라우드 vdi", "온프레미스 vdi", "vdi 통합"),
        _build(
            "하이브리드 클라우드 VDI",
            "클라우드 VDI와 온프레미스 VDI를 Site-to-Site VPN으로 통합",
            [
                ("user", "user", "원격 사용자", None),
                ("cloud-gw", "load-balancer", "클라우드 VDI GW", "external"),
                ("cloud-vdi", "vm", "클라우드 VDI", "external"),
                ("vpn", "vpn-gateway", "Site-to-Site VPN", "dmz"),
                ("onprem-gw", "load-balancer", "온프레미스 VDI GW", "internal"),
                ("onprem-vdi", "vm", "온프레미스 VDI", "internal"),
                ("ad", "ldap-ad", "AD/LDAP", "internal"),
                ("storage", "storage", "통합 스토리지", "internal"),
            ],
            [
                ("user", "cloud-gw", "request", "클라우드 접속"),
                ("user", "onprem-gw", "encrypted", "VPN 접속"),
                ("cloud-gw", "cloud-vdi", "request", None),
                ("onprem-gw", "onprem-vdi", "request", None),
                ("cloud-vdi", "vpn", "encrypted", None),
                ("vpn", "ad", "request", "인증"),
                ("vpn", "storage", "sync", "데이터 동기화"),
                ("onprem-vdi", "ad", "request", None),
                ("onprem-vdi", "storage", "request", None),
            ],
        ),
    ),
)

FALLBACK_TEMPLATE_ID = "simple-waf"

_BY_ID: dict[str, TemplateEntry] = {t.template_id: t for t in TEMPLATES}


def list_templates() -> list[str]:
    return [t.template_id for t in TEMPLATES]


def get_template(template_id: str) -> Spec | None:
    """Deep copy of a template's spec so callers can never mutate the table."""
    entry = _BY_ID.get(template_id)
    return entry.spec.model_copy(deep=True) if entry else None


def get_entry(template_id: str) -> TemplateEntry | None:
    return _BY_ID.get(template_id)


def match_by_keywords(normalized_prompt: str) -> tuple[TemplateEntry, str] | None:
    """First entry (declaration order) with any keyword contained in the prompt."""
    for entry in TEMPLATES:
        for keyword in entry.keywords:
            if keyword.lower() in normalized_prompt:
                return (entry, keyword)
    return None


def match_by_id(normalized_prompt: str) -> TemplateEntry | None:
    for entry in TEMPLATES:
        if entry.template_id.lower() in normalized_prompt:
            return entry
    return None


def trigger_examples(limit: int = 4) -> list[str]:
    """One representative keyword per template, used as suggestions."""
    return [f"{t.keywords[0]} ({t.template_id})" for t in TEMPLATES[:limit]]
