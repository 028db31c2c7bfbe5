"""
Component catalog: the closed set of node kinds with their category, default
tier and display labels, plus the multi-language synonym patterns used to
detect components in free text.
"""

from __future__ import annotations

import re
import uuid
from typing import NamedTuple

# JS-compatible matching: case-insensitive, ASCII-only \w so that "fw" followed
# by a Hangul particle still counts as a standalone abbreviation.
_FLAGS = re.IGNORECASE | re.ASCII


class ComponentPattern(NamedTuple):
    pattern: re.Pattern[str]
    type: str
    label: str
    label_ko: str


def _p(regex: str, node_type: str, label: str, label_ko: str) -> ComponentPattern:
    return ComponentPattern(re.compile(regex, _FLAGS), node_type, label, label_ko)


# ---------------------------------------------------------------------------
# Synonym patterns, scanned in order: more specific patterns come first
# ---------------------------------------------------------------------------
NODE_PATTERNS: tuple[ComponentPattern, ...] = (
    # External
    _p(r"user|사용자|유저|client|클라이언트", "user", "User", "사용자"),
    _p(r"internet|인터넷|외부망", "internet", "Internet", "인터넷"),
    # Security
    _p(r"waf|웹방화벽|웹 ?애플리케이션 ?방화벽", "waf", "WAF", "웹방화벽"),
    _p(r"firewall|방화벽|fw(?!\w)", "firewall", "Firewall", "방화벽"),
    _p(r"ids|ips|침입.*탐지|침입.*방지|intrusion", "ids-ips", "IDS/IPS", "IDS/IPS"),
    _p(r"vpn|가상사설망", "vpn-gateway", "VPN Gateway", "VPN 게이트웨이"),
    _p(r"nac|네트워크.*접근.*제어", "nac", "NAC", "NAC"),
    _p(r"dlp|데이터.*유출.*방지", "dlp", "DLP", "DLP"),
    # Network
    _p(r"cdn|content.*delivery", "cdn", "CDN", "CDN"),
    _p(r"load ?balancer|로드 ?밸런서|lb(?!\w)|부하분산", "load-balancer", "Load Balancer", "로드밸런서"),
    _p(r"router|라우터", "router", "Router", "라우터"),
    _p(r"switch.*l3|l3.*switch|레이어 ?3|스위치.*l3", "switch-l3", "L3 Switch", "L3 스위치"),
    _p(r"switch|스위치", "switch-l2", "L2 Switch", "L2 스위치"),
    _p(r"sd-?wan|software.*defined.*wan", "sd-wan", "SD-WAN", "SD-WAN"),
    _p(r"dns|도메인.*네임", "dns", "DNS", "DNS"),
    # Compute
    _p(r"web ?server|웹 ?서버", "web-server", "Web Server", "웹서버"),
    _p(r"app ?server|앱 ?서버|애플리케이션.*서버|was", "app-server", "App Server", "앱서버"),
    _p(r"db|database|데이터베이스|디비", "db-server", "Database", "데이터베이스"),
    _p(r"kubernetes|k8s|쿠버네티스", "kubernetes", "Kubernetes", "쿠버네티스"),
    _p(r"container|컨테이너|docker|도커", "container", "Container", "컨테이너"),
    _p(r"vm|virtual.*machine|가상.*머신|가상.*서버", "vm", "VM", "가상머신"),
    # Cloud
    _p(r"aws.*vpc|vpc.*aws", "aws-vpc", "AWS VPC", "AWS VPC"),
    _p(r"azure.*vnet|vnet.*azure", "azure-vnet", "Azure VNet", "Azure VNet"),
    _p(r"gcp|google.*cloud", "gcp-network", "GCP Network", "GCP 네트워크"),
    _p(r"private.*cloud|사설.*클라우드", "private-cloud", "Private Cloud", "프라이빗 클라우드"),
    # Storage
    _p(r"san|nas|스토리지.*영역|네트워크.*스토리지", "san-nas", "SAN/NAS", "SAN/NAS"),
    _p(r"object.*storage|오브젝트.*스토리지|s3", "object-storage", "Object Storage", "오브젝트 스토리지"),
    _p(r"backup|백업", "backup", "Backup", "백업"),
    _p(r"cache|캐시|redis|memcached", "cache", "Cache", "캐시"),
    _p(r"storage|스토리지|저장소", "storage", "Storage", "스토리지"),
    # Auth
    _p(r"ldap|ad|active.*directory|액티브.*디렉토리", "ldap-ad", "LDAP/AD", "LDAP/AD"),
    _p(r"sso|single.*sign.*on|싱글.*사인온", "sso", "SSO", "SSO"),
    _p(r"mfa|multi.*factor|다중.*인증", "mfa", "MFA", "MFA"),
    _p(r"iam|identity.*access", "iam", "IAM", "IAM"),
)


# ---------------------------------------------------------------------------
# Component table: type -> (category, default tier, display name)
# ---------------------------------------------------------------------------
COMPONENTS: dict[str, tuple[str, str, str]] = {
    "user": ("external", "external", "User"),
    "internet": ("external", "external", "Internet"),
    "firewall": ("security", "dmz", "Firewall"),
    "waf": ("security", "dmz", "WAF"),
    "ids-ips": ("security", "dmz", "IDS/IPS"),
    "vpn-gateway": ("security", "dmz", "VPN Gateway"),
    "nac": ("security", "internal", "NAC"),
    "dlp": ("security", "internal", "DLP"),
    "router": ("network", "internal", "Router"),
    "switch-l2": ("network", "internal", "L2 Switch"),
    "switch-l3": ("network", "internal", "L3 Switch"),
    "load-balancer": ("network", "dmz", "Load Balancer"),
    "sd-wan": ("network", "internal", "SD-WAN"),
    "dns": ("network", "dmz", "DNS"),
    "cdn": ("network", "external", "CDN"),
    "web-server": ("compute", "internal", "Web Server"),
    "app-server": ("compute", "internal", "App Server"),
    "db-server": ("compute", "data", "DB Server"),
    "container": ("compute", "internal", "Container"),
    "vm": ("compute", "internal", "VM"),
    "kubernetes": ("compute", "internal", "Kubernetes"),
    "aws-vpc": ("cloud", "internal", "AWS VPC"),
    "azure-vnet": ("cloud", "internal", "Azure VNet"),
    "gcp-network": ("cloud", "internal", "GCP Network"),
    "private-cloud": ("cloud", "internal", "Private Cloud"),
    "san-nas": ("storage", "data", "SAN/NAS"),
    "object-storage": ("storage", "data", "Object Storage"),
    "backup": ("storage", "data", "Backup"),
    "cache": ("storage", "data", "Cache"),
    "storage": ("storage", "data", "Storage"),
    "ldap-ad": ("auth", "internal", "LDAP/AD"),
    "sso": ("auth", "internal", "SSO"),
    "mfa": ("auth", "internal", "MFA"),
    "iam": ("auth", "internal", "IAM"),
}


def category_for_type(node_type: str) -> str:
    entry = COMPONENTS.get(node_type)
    return entry[0] if entry else "external"


def tier_for_type(node_type: str) -> str:
    entry = COMPONENTS.get(node_type)
    return entry[1] if entry else "internal"


def label_for_type(node_type: str) -> str:
    """Display name for a node type; unknown types are title-cased from their slug."""
    entry = COMPONENTS.get(node_type)
    if entry:
        return entry[2]
    return " ".join(part.capitalize() for part in node_type.split("-") if part)


def detect_components(text: str) -> list[ComponentPattern]:
    """Every catalog pattern that matches anywhere in text, in catalog order."""
    normalized = (text or "").lower()
    return [p for p in NODE_PATTERNS if p.pattern.search(normalized)]


def detect_component_type(text: str) -> str | None:
    """First matching component type for a single word or phrase."""
    normalized = (text or "").lower()
    for p in NODE_PATTERNS:
        if p.pattern.search(normalized):
            return p.type
    return None


def mint_node_id(node_type: str) -> str:
    return f"{node_type}-{uuid.uuid4().hex[:8]}"
