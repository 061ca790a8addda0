from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name='Job',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('job_number', models.CharField(max_length=50, unique=True)),
                ('description', models.TextField(blank=True, default='')),
                ('customer_name', models.CharField(blank=True, default='', max_length=200)),
                ('is_callback', models.BooleanField(default=False)),
                ('first_call_complete', models.BooleanField(default=False)),
                ('parts_cost', models.DecimalField(decimal_places=4, default=0, max_digits=15)),
                ('parts_total', models.DecimalField(decimal_places=2, default=0, max_digits=15)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'ordering': ['-created_at'],
            },
        ),
    ]
