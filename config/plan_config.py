"""
会员套餐配置接口 - 支持可替换的套餐配置

新门店可以实现自己的套餐配置，替换默认配置。
"""
from abc import ABC, abstractmethod
from typing import Dict, List, Optional


class PlanConfig(ABC):
    """套餐配置抽象基类"""

    @abstractmethod
    def get_plan_prices(self) -> Dict[str, float]:
        """获取标准套餐价格（不含 Custom）"""
        pass

    @abstractmethod
    def get_durations(self) -> List[int]:
        """获取允许的办卡时长（月）"""
        pass

    @abstractmethod
    def get_payment_methods(self) -> List[str]:
        """获取允许的支付方式"""
        pass

    def get_membership_types(self) -> List[str]:
        """获取全部套餐类型（标准套餐 + Custom）"""
        return list(self.get_plan_prices()) + ["Custom"]

    def get_individual_types(self) -> List[str]:
        """获取解除情侣绑定后可选的个人套餐类型"""
        return [t for t in self.get_membership_types() if t != "Couple"]

    def price_for(self, membership_type: str) -> Optional[float]:
        """标准套餐价格，Custom 或未知类型返回 None"""
        return self.get_plan_prices().get(membership_type)


class GymPlanConfig(PlanConfig):
    """健身房默认套餐配置"""

    def get_plan_prices(self) -> Dict[str, float]:
        return {
            "Basic": 1000.0,
            "Premium": 2000.0,
            "Couple": 3000.0,
            "Student": 500.0,
        }

    def get_durations(self) -> List[int]:
        return [1, 3, 6, 12]

    def get_payment_methods(self) -> List[str]:
        return ["Cash", "UPI", "Card", "BankTransfer"]


# 全局套餐配置实例（可以在启动脚本中替换）
plan_config: PlanConfig = GymPlanConfig()
