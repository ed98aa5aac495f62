from .pedido_models import PedidoVenda, StatusFiscalPedido

__all__ = ["PedidoVenda", "StatusFiscalPedido"]
