# tests/fiscal/test_emissao_store.py

import pytest
from django.core.exceptions import ValidationError

from fiscal.exceptions import ConflictAlreadyExistsError
from fiscal.models import EmissaoStatus, NfeAuditoria, NfeEmissao
from fiscal.services import emissao_store
from fiscal.services.emissao_state_machine import EmissaoStateMachine
from fiscal.services.emissao_store import (
    gerar_id_lote,
    montar_nfe_proc,
    obter_ou_criar,
    registrar_auditoria,
    reivindicar_envio,
)


def _campos(**extras):
    campos = {
        "numero": 1,
        "serie": 1,
        "status": EmissaoStatus.RASCUNHO,
        "c_uf": "35",
        "uf": "SP",
        "tp_amb": "2",
        "tentativas": 0,
    }
    campos.update(extras)
    return campos


@pytest.mark.django_db
def test_obter_ou_criar_cria_uma_vez(empresa, chave_factory):
    chave = chave_factory()

    primeira, criada1 = obter_ou_criar(empresa.id, chave, _campos())
    segunda, criada2 = obter_ou_criar(empresa.id, chave, _campos(numero=99))

    assert (criada1, criada2) == (True, False)
    assert primeira.pk == segunda.pk
    assert segunda.numero == 1


@pytest.mark.django_db
def test_obter_ou_criar_devolve_vencedor_em_corrida(empresa, chave_factory, monkeypatch):
    chave = chave_factory(numero=2)
    inserir_original = emissao_store._inserir

    def _inserir_perdendo_corrida(empresa_id, chave_acesso, campos):
        # outro processo grava entre o SELECT e o INSERT
        inserir_original(empresa_id, chave_acesso, dict(campos, numero=777))
        raise ConflictAlreadyExistsError()

    monkeypatch.setattr(emissao_store, "_inserir", _inserir_perdendo_corrida)

    emissao, criada = obter_ou_criar(empresa.id, chave, _campos(numero=2))

    assert criada is False
    assert emissao.numero == 777
    assert NfeEmissao.objects.filter(chave_acesso=chave).count() == 1


@pytest.mark.django_db
def test_inserir_duplicado_vira_conflito(empresa, chave_factory):
    chave = chave_factory(numero=3)
    emissao_store._inserir(empresa.id, chave, _campos())

    with pytest.raises(ConflictAlreadyExistsError):
        emissao_store._inserir(empresa.id, chave, _campos())

    assert NfeEmissao.objects.filter(chave_acesso=chave).count() == 1


@pytest.mark.django_db
def test_reivindicar_envio_so_uma_vez(empresa, chave_factory):
    emissao, _ = obter_ou_criar(empresa.id, chave_factory(numero=4), _campos())
    copia_antiga = NfeEmissao.objects.get(pk=emissao.pk)

    assert reivindicar_envio(emissao, "123456789012345") is True
    assert emissao.tentativas == 1

    assert reivindicar_envio(copia_antiga, "999999999999999") is False

    emissao.refresh_from_db()
    assert emissao.tentativas == 1
    assert emissao.id_lote == "123456789012345"


def test_gerar_id_lote_ate_15_digitos():
    id_lote = gerar_id_lote()
    assert id_lote.isdigit()
    assert len(id_lote) <= 15


def test_montar_nfe_proc_remove_declaracoes_internas():
    nfe_proc = montar_nfe_proc('<?xml version="1.0"?><NFe/>', '<?xml version="1.0"?><protNFe/>')

    assert nfe_proc.count("<?xml") == 1
    assert "<NFe/><protNFe/></nfeProc>" in nfe_proc


# ---------------------------------------------------------------------------
# Imutabilidade e máquina de estados
# ---------------------------------------------------------------------------


@pytest.mark.django_db
def test_nfe_autorizada_nao_troca_protocolo(empresa, chave_factory):
    emissao, _ = obter_ou_criar(
        empresa.id,
        chave_factory(numero=5),
        _campos(status=EmissaoStatus.AUTORIZADA, n_prot="135250000000001", xml_assinado="<NFe/>", tentativas=1),
    )
    recarregada = NfeEmissao.objects.get(pk=emissao.pk)

    recarregada.n_prot = "135250000000999"
    with pytest.raises(ValidationError):
        recarregada.save()

    recarregada = NfeEmissao.objects.get(pk=emissao.pk)
    recarregada.xml_assinado = "<NFe>outro</NFe>"
    with pytest.raises(ValidationError):
        recarregada.save()


@pytest.mark.django_db
def test_nfe_autorizada_aceita_preencher_protocolo_vazio(empresa, chave_factory):
    emissao, _ = obter_ou_criar(
        empresa.id,
        chave_factory(numero=6),
        _campos(status=EmissaoStatus.AUTORIZADA, tentativas=1),
    )
    recarregada = NfeEmissao.objects.get(pk=emissao.pk)

    recarregada.n_prot = "135250000000001"
    recarregada.save(update_fields=["n_prot"])

    assert NfeEmissao.objects.get(pk=emissao.pk).n_prot == "135250000000001"


@pytest.mark.parametrize(
    "atual, novo, permitido",
    [
        (EmissaoStatus.RASCUNHO, EmissaoStatus.PROCESSANDO, True),
        (EmissaoStatus.PROCESSANDO, EmissaoStatus.AUTORIZADA, True),
        (EmissaoStatus.AUTORIZADA, EmissaoStatus.CANCELADA, True),
        (EmissaoStatus.AUTORIZADA, EmissaoStatus.REJEITADA, False),
        (EmissaoStatus.AUTORIZADA, EmissaoStatus.PROCESSANDO, False),
        (EmissaoStatus.DENEGADA, EmissaoStatus.AUTORIZADA, False),
        (EmissaoStatus.CANCELADA, EmissaoStatus.AUTORIZADA, False),
        (EmissaoStatus.AUTORIZADA, EmissaoStatus.AUTORIZADA, True),
    ],
)
def test_pode_transitar(atual, novo, permitido):
    assert EmissaoStateMachine.pode_transitar(atual, novo) is permitido


@pytest.mark.django_db
def test_mudar_status_invalido_levanta(empresa, chave_factory):
    emissao, _ = obter_ou_criar(
        empresa.id,
        chave_factory(numero=7),
        _campos(status=EmissaoStatus.AUTORIZADA, tentativas=1),
    )

    with pytest.raises(ValidationError):
        EmissaoStateMachine.mudar_status(emissao, EmissaoStatus.REJEITADA)


@pytest.mark.django_db
def test_rejeitada_pela_sefaz_nao_volta_para_rascunho(empresa, chave_factory):
    emissao, _ = obter_ou_criar(
        empresa.id,
        chave_factory(numero=8),
        _campos(status=EmissaoStatus.REJEITADA, c_stat="539", tentativas=1),
    )

    with pytest.raises(ValidationError):
        EmissaoStateMachine.mudar_status(emissao, EmissaoStatus.RASCUNHO)


@pytest.mark.django_db
def test_mudar_status_mesmo_status_nao_faz_nada(empresa, chave_factory):
    emissao, _ = obter_ou_criar(empresa.id, chave_factory(numero=9), _campos())

    assert EmissaoStateMachine.mudar_status(emissao, EmissaoStatus.RASCUNHO) is False


# ---------------------------------------------------------------------------
# Auditoria
# ---------------------------------------------------------------------------


@pytest.mark.django_db
def test_falha_na_auditoria_nao_propaga(empresa, chave_factory, monkeypatch, caplog):
    emissao, _ = obter_ou_criar(empresa.id, chave_factory(numero=10), _campos())

    def _explodir(**kwargs):
        raise RuntimeError("banco fora")

    monkeypatch.setattr(NfeAuditoria.objects, "create", _explodir)

    registrar_auditoria(emissao, "EMISSAO_PROCESSANDO")

    assert any(r.getMessage() == "nfe_auditoria_falha" for r in caplog.records)
