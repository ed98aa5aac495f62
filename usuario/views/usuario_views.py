from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import AllowAny
from rest_framework.response import Response
from django.contrib.auth import authenticate
from django.utils import timezone
from rest_framework_simplejwt.tokens import RefreshToken
from rest_framework_simplejwt.serializers import TokenRefreshSerializer

from usuario.serializers import LoginSerializer


@api_view(["POST"])
@permission_classes([AllowAny])
def login(request):
    ser = LoginSerializer(data=request.data)
    ser.is_valid(raise_exception=True)
    data = ser.validated_data
    user = authenticate(username=data["username"], password=data["password"])
    if not user:
        return Response({"code": "AUTH_1001", "message": "Credenciais inválidas"}, status=401)

    empresa_ids = [str(e) for e in user.userempresa_set.values_list("empresa_id", flat=True)]

    empresa_id = data.get("empresa_id")
    if empresa_id is not None and str(empresa_id) not in empresa_ids:
        return Response({"code": "AUTH_1006", "message": "Usuário não autorizado na empresa"}, status=403)

    refresh = RefreshToken.for_user(user)
    refresh["empresa_ids"] = empresa_ids
    if empresa_id is not None:
        refresh["empresa_id"] = str(empresa_id)

    access = refresh.access_token
    access["iat_server"] = int(timezone.now().timestamp())

    return Response({
        "access": str(access),
        "refresh": str(refresh),
        "empresa_ids": empresa_ids,
    })


@api_view(["POST"])
@permission_classes([AllowAny])
def refresh(request):
    ser = TokenRefreshSerializer(data=request.data)
    if not ser.is_valid():
        return Response({"code": "AUTH_1011", "message": "Refresh token inválido ou expirado."}, status=401)
    return Response(ser.validated_data)
