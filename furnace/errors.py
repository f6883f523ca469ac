"""
炉膛传热引擎的错误类型

每个错误都带有对外报告的错误码
"""


class FurnaceError(Exception):
    code = "E000"

    def __init__(self, message):
        super().__init__(message)
        self.message = message

    def __str__(self):
        return f"[{self.code}] {self.message}"


class ValidationError(FurnaceError):
    """参数超出范围或相互矛盾"""
    code = "E001"


class MeshInitializationError(FurnaceError):
    """网格尺寸无效"""
    code = "E002"


class NumericalInstabilityError(FurnaceError):
    """时间步内出现非有限值或温度发散"""
    code = "E003"


class ConvergenceError(FurnaceError):
    """SOR迭代次数用尽仍未达到容差"""
    code = "E004"

    def __init__(self, message, iterations=None, residual=None):
        super().__init__(message)
        self.iterations = iterations
        self.residual = residual


class FormulaEvaluationError(FurnaceError):
    """用户自定义物性公式解析或求值失败"""
    code = "E008"


class SimulationStateError(FurnaceError):
    """控制器收到非法的状态转换请求"""
    code = "E009"
