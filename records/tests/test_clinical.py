import pytest
from django.core.files.uploadedfile import SimpleUploadedFile

from records.exceptions import AuthorizationError
from records.models import MedicalRecord, Prescription, TestResult
from records.services import clinical
from records.services.clinical import MEDICAL_RECORDS, PRESCRIPTIONS, TEST_RESULTS

pytestmark = pytest.mark.django_db


def test_doctor_writes_record_for_own_hospital_patient(client_for, doctor1, patient1, h1):
    r = client_for(doctor1).post('/api/medical-records', {
        'patientId': patient1.id, 'diagnosis': 'Seasonal flu', 'symptoms': ['fever', 'cough'],
        'vitalSigns': {'temperature': 38.5},
    }, format='json')
    assert r.status_code == 201, r.data
    rec = MedicalRecord.objects.get(pk=r.data['medicalRecord']['id'])
    assert rec.hospital_id == h1.id
    assert rec.doctor == doctor1
    assert rec.symptoms == ['fever', 'cough']


def test_cross_hospital_write_is_denied_even_with_grant(doctor1, patient2, grant_h1_h2):
    with pytest.raises(AuthorizationError) as exc:
        clinical.create(PRESCRIPTIONS, doctor1, {
            'patientId': patient2.id, 'medicationName': 'Amoxicillin', 'dosage': '500mg', 'frequency': 'tid',
        })
    assert exc.value.kind == 'cross_tenant_write'
    assert not Prescription.objects.exists()


def test_nurses_cannot_prescribe(client_for, nurse1, patient1):
    r = client_for(nurse1).post('/api/prescriptions', {
        'patientId': patient1.id, 'medicationName': 'Ibuprofen', 'dosage': '200mg', 'frequency': 'bid',
    }, format='json')
    assert r.status_code == 403
    assert r.data['error']['code'] == 'role_cannot_create'


def test_nurses_record_test_results(client_for, nurse1, patient1):
    r = client_for(nurse1).post('/api/test-results', {
        'patientId': patient1.id, 'testName': 'Glucose', 'result': '5.4 mmol/L',
    }, format='json')
    assert r.status_code == 201, r.data
    assert r.data['testResult']['orderedBy']['id'] == nurse1.id


def test_patients_cannot_write_clinical_records(client_for, patient1):
    r = client_for(patient1).post('/api/medical-records', {'patientId': patient1.id, 'diagnosis': 'self'},
                                  format='json')
    assert r.status_code == 403


def test_department_must_belong_to_the_hospital(client_for, doctor1, patient1, lab2):
    r = client_for(doctor1).post('/api/medical-records', {
        'patientId': patient1.id, 'diagnosis': 'Flu', 'departmentId': lab2.id,
    }, format='json')
    assert r.status_code == 400


def test_walk_in_patient_is_charted_at_authors_hospital(doctor1, make_user, h1):
    walk_in = make_user('patient')
    rec = clinical.create(MEDICAL_RECORDS, doctor1, {'patientId': walk_in.id, 'diagnosis': 'Sprain'})
    assert rec.hospital_id == h1.id


def test_author_updates_other_doctor_does_not(client_for, doctor2, admin2, record2, make_user, h2):
    r = client_for(doctor2).patch(f'/api/medical-records/{record2.id}', {'treatment': 'Amlodipine'}, format='json')
    assert r.status_code == 200, r.data
    record2.refresh_from_db()
    assert record2.treatment == 'Amlodipine'

    colleague = make_user('doctor', h2)
    r = client_for(colleague).patch(f'/api/medical-records/{record2.id}', {'treatment': 'x'}, format='json')
    assert r.status_code == 403
    assert r.data['error']['code'] == 'not_author'

    r = client_for(admin2).patch(f'/api/medical-records/{record2.id}', {'notes': 'reviewed'}, format='json')
    assert r.status_code == 200


def test_update_cannot_move_record_to_another_patient(client_for, doctor2, record2, patient1):
    r = client_for(doctor2).patch(f'/api/medical-records/{record2.id}', {'patientId': patient1.id}, format='json')
    assert r.status_code == 200
    record2.refresh_from_db()
    assert record2.patient_id != patient1.id


def test_grant_holder_reads_records(client_for, doctor1, patient2, record2, grant_h1_h2):
    r = client_for(doctor1).get(f'/api/medical-records/patient/{patient2.id}')
    assert r.status_code == 200
    assert [m['id'] for m in r.data['medicalRecords']] == [record2.id]
    assert r.data['medicalRecords'][0]['diagnosis'] == 'Hypertension'


def test_diagnosis_hidden_when_grant_excludes_it(client_for, doctor1, patient2, record2, grant_h1_h2):
    grant_h1_h2.can_view_diagnosis = False
    grant_h1_h2.save()
    r = client_for(doctor1).get(f'/api/medical-records/patient/{patient2.id}')
    rec = r.data['medicalRecords'][0]
    assert rec['diagnosis'] is None
    assert rec['diagnosisHidden'] is True
    assert rec['treatment'] == 'Lisinopril'


def test_same_hospital_sees_diagnosis(client_for, doctor2, patient2, record2):
    r = client_for(doctor2).get(f'/api/medical-records/patient/{patient2.id}')
    assert r.data['medicalRecords'][0]['diagnosisHidden'] is False


def test_no_grant_means_403(client_for, doctor1, patient2, record2):
    r = client_for(doctor1).get(f'/api/medical-records/patient/{patient2.id}')
    assert r.status_code == 403


def test_patient_reads_own_prescriptions(client_for, patient2, doctor2, h2):
    Prescription.objects.create(patient=patient2, doctor=doctor2, hospital=h2, medication_name='Metformin',
                                dosage='500mg', frequency='bid')
    r = client_for(patient2).get(f'/api/prescriptions/patient/{patient2.id}')
    assert r.status_code == 200
    assert r.data['prescriptions'][0]['medicationName'] == 'Metformin'


def test_department_staff_cannot_list_records(client_for, staff1, patient1, doctor1, h1):
    MedicalRecord.objects.create(patient=patient1, doctor=doctor1, hospital=h1, diagnosis='Flu')
    r = client_for(staff1).get(f'/api/medical-records/patient/{patient1.id}')
    assert r.status_code == 403
    assert r.data['error']['code'] == 'department_staff_no_patient_access'


def test_attach_file_replaces_previous_and_links(client_for, doctor1, patient1, h1):
    result = TestResult.objects.create(patient=patient1, ordered_by=doctor1, hospital=h1, test_name='X-ray')
    client = client_for(doctor1)
    first = SimpleUploadedFile('a.png', b'\x89PNG first', content_type='image/png')
    r = client.post(f'/api/test-results/{result.id}/upload', {'file': first}, format='multipart')
    assert r.status_code == 200, r.data
    result.refresh_from_db()
    old_url = result.file_url
    assert old_url.endswith('.png')

    second = SimpleUploadedFile('b.pdf', b'%PDF second', content_type='application/pdf')
    r = client.post(f'/api/test-results/{result.id}/upload', {'file': second}, format='multipart')
    assert r.status_code == 200
    result.refresh_from_db()
    assert result.file_url != old_url
    assert not clinical.blob_store.storage.exists(old_url)

    link = r.data['testResult']['fileLink']
    download = client.get(link)
    assert download.status_code == 200
    assert b''.join(download.streaming_content) == b'%PDF second'


def test_upload_rejects_unsupported_types(client_for, doctor1, patient1, h1):
    result = TestResult.objects.create(patient=patient1, ordered_by=doctor1, hospital=h1, test_name='X-ray')
    bad = SimpleUploadedFile('run.exe', b'MZ', content_type='application/x-msdownload')
    r = client_for(doctor1).post(f'/api/test-results/{result.id}/upload', {'file': bad}, format='multipart')
    assert r.status_code == 400
    assert r.data['error']['code'] == 'unsupported_file_type'


def test_tampered_download_link_is_404(client):
    r = client.get('/api/files', {'token': 'forged'})
    assert r.status_code == 404


def test_list_for_patient_orders_newest_first(doctor2, patient2, h2):
    older = MedicalRecord.objects.create(patient=patient2, doctor=doctor2, hospital=h2, diagnosis='A')
    newer = MedicalRecord.objects.create(patient=patient2, doctor=doctor2, hospital=h2, diagnosis='B',
                                         visit_date=older.visit_date.replace(year=older.visit_date.year + 1))
    items = clinical.list_for_patient(MEDICAL_RECORDS, doctor2, patient2)
    assert [i.id for i in items] == [newer.id, older.id]
