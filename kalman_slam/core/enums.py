"""枚举定义"""
from enum import IntEnum


class KFMethod(IntEnum):
    """卡尔曼更新策略"""
    EKF_NAIVE = 0       # 标准 EKF，一次矩阵更新
    IKF_FULL = 1        # 迭代 EKF，围绕更新后的状态重新线性化
    EKF_DAVISON = 2     # 逐标量顺序更新，不求逆
    IKF_SCALAR = 3      # 逐标量 IKF (保留，未实现)

    @classmethod
    def from_value(cls, value) -> 'KFMethod':
        """
        从配置值解析更新策略

        支持枚举本身、整数、以及不区分大小写的名称 ('ekf_naive', 'IKF_FULL' 等)。

        Raises:
            ValueError: 无法识别的值
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            name = value.strip().upper()
            if name in cls.__members__:
                return cls[name]
            raise ValueError(f"Unknown KF method name: {value!r}")
        if isinstance(value, int) and not isinstance(value, bool):
            return cls(value)
        raise ValueError(f"Invalid KF method value: {value!r}")

    def is_full_matrix(self) -> bool:
        return self in (KFMethod.EKF_NAIVE, KFMethod.IKF_FULL)

    def is_scalar(self) -> bool:
        return self in (KFMethod.EKF_DAVISON, KFMethod.IKF_SCALAR)
