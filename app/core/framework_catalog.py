"""Platform framework catalog.

Seed definitions for the platform-owned frameworks. Zone keys double as the
health dimension keys of each framework's weight table, so every zone of a
platform framework is also a scored dimension.
"""

from dataclasses import dataclass, field

from app.core.framework_weights import get_framework_weights


@dataclass(frozen=True)
class CatalogZone:
    zone_key: str
    name: str
    description: str
    color_key: str


@dataclass(frozen=True)
class CatalogFramework:
    slug: str
    name: str
    icon: str
    description: str
    zones: list[CatalogZone] = field(default_factory=list)


@dataclass(frozen=True)
class HealthDimension:
    """A scored dimension as presented to the analysis agent."""

    key: str
    name: str
    weight: float
    description: str


PLATFORM_FRAMEWORKS: list[CatalogFramework] = [
    CatalogFramework(
        slug="lean-canvas",
        name="精益画布",
        icon="layout-grid",
        description="用一页纸梳理问题、方案、价值主张与商业模式的关键假设",
        zones=[
            CatalogZone("problem", "问题", "目标用户最痛的1-3个问题", "red"),
            CatalogZone("customer-segments", "客户细分", "目标用户与早期采用者", "orange"),
            CatalogZone("unique-value", "独特价值主张", "一句话说明为什么与众不同", "yellow"),
            CatalogZone("solution", "解决方案", "针对每个问题的最小解决方案", "green"),
            CatalogZone("channels", "渠道", "触达用户的路径", "teal"),
            CatalogZone("revenue", "收入来源", "收入模式与定价", "blue"),
            CatalogZone("cost", "成本结构", "获客、开发、运营成本", "indigo"),
            CatalogZone("key-metrics", "增长指标", "衡量进展的关键数据", "purple"),
            CatalogZone("unfair-advantage", "竞争壁垒", "难以复制或购买的优势", "pink"),
        ],
    ),
    CatalogFramework(
        slug="design-thinking",
        name="设计思维",
        icon="lightbulb",
        description="以用户为中心的五阶段创新流程",
        zones=[
            CatalogZone("empathize", "共情", "理解用户处境与感受", "red"),
            CatalogZone("define", "定义", "提炼核心问题陈述", "orange"),
            CatalogZone("ideate", "构思", "发散产生解决方案", "yellow"),
            CatalogZone("prototype", "原型", "快速构建可验证的原型", "green"),
            CatalogZone("test", "测试", "与用户一起验证并迭代", "blue"),
        ],
    ),
    CatalogFramework(
        slug="business-canvas",
        name="商业模式画布",
        icon="briefcase",
        description="九个模块描述企业如何创造、传递和获取价值",
        zones=[
            CatalogZone("key-partners", "关键合作伙伴", "供应商与合作网络", "red"),
            CatalogZone("key-activities", "关键业务", "必须做好的关键事情", "orange"),
            CatalogZone("key-resources", "核心资源", "最重要的资产", "yellow"),
            CatalogZone("value-propositions", "价值主张", "为客户解决的问题与满足的需求", "green"),
            CatalogZone("customer-relationships", "客户关系", "与客户建立的关系类型", "teal"),
            CatalogZone("channels", "渠道通路", "沟通与交付价值的方式", "blue"),
            CatalogZone("customer-segments", "客户细分", "服务的目标人群", "indigo"),
            CatalogZone("cost-structure", "成本结构", "运营产生的主要成本", "purple"),
            CatalogZone("revenue-streams", "收入来源", "从客户获取收入的方式", "pink"),
        ],
    ),
    CatalogFramework(
        slug="okr-framework",
        name="OKR 目标管理",
        icon="target",
        description="从愿景到目标、关键结果与行动计划的对齐",
        zones=[
            CatalogZone("vision", "愿景", "长期方向", "blue"),
            CatalogZone("objectives", "目标", "定性且鼓舞人心的目标", "green"),
            CatalogZone("key-results", "关键结果", "可量化的衡量标准", "orange"),
            CatalogZone("initiatives", "行动计划", "推动关键结果的举措", "purple"),
        ],
    ),
    CatalogFramework(
        slug="jobs-to-be-done",
        name="待完成任务",
        icon="wrench",
        description="围绕用户想要完成的任务理解需求",
        zones=[
            CatalogZone("job-statement", "任务陈述", "用户想要完成的核心任务", "red"),
            CatalogZone("desired-outcomes", "期望结果", "用户衡量成功的标准", "green"),
            CatalogZone("current-solutions", "现有方案", "用户目前如何完成任务", "yellow"),
            CatalogZone("job-circumstances", "任务情境", "任务发生的时间、地点与触发条件", "blue"),
            CatalogZone("job-constraints", "任务约束", "阻碍用户完成任务的限制", "purple"),
        ],
    ),
]


def get_catalog_framework(slug: str | None) -> CatalogFramework | None:
    for framework in PLATFORM_FRAMEWORKS:
        if framework.slug == slug:
            return framework
    return None


def get_health_dimensions(framework_slug: str | None) -> list[HealthDimension]:
    """
    Dimension descriptors for the analysis prompt.

    Names and descriptions come from the catalog zone with the same key;
    keys without a catalog zone fall back to the key itself.
    """
    weights = get_framework_weights(framework_slug)
    if not weights:
        return []

    catalog = get_catalog_framework(framework_slug)
    zones = {z.zone_key: z for z in catalog.zones} if catalog else {}

    dimensions = []
    for key, weight in weights.items():
        zone = zones.get(key)
        dimensions.append(
            HealthDimension(
                key=key,
                name=zone.name if zone else key,
                weight=weight,
                description=zone.description if zone else "",
            )
        )
    return dimensions
